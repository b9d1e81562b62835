# Operation dispatch for the query endpoint
import re

from flask import current_app
from flask_jwt_extended import create_access_token
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from errors import (
    AppError, AuthenticationError, ForbiddenError, NotFoundError,
    RoutingError, StorageError, ValidationError,
)
from models import db, commit, User, Post, Like, Follow

QUERY = 'query'
MUTATION = 'mutation'

DEFAULT_USERNAME = 'default_user'
DEFAULT_EMAIL = 'default@example.com'
DEFAULT_NAME = 'Default User'

# Largest id a signed 64-bit integer column can hold
MAX_ID = 2 ** 63 - 1

# Optional operation keyword, name and variable definitions, then the root field
_ROOT_FIELD = re.compile(
    r'^\s*(?:(query|mutation)\b\s*\w*\s*(?:\([^)]*\))?\s*)?\{\s*(\w+)'
)

# operation name -> (kind, handler, needs_actor)
OPERATIONS = {}


def operation(name, kind=QUERY, needs_actor=False):
    """Register a handler under an operation name"""
    def decorator(func):
        OPERATIONS[name] = (kind, func, needs_actor)
        return func
    return decorator


def error_response(error):
    return {"errors": [error.to_dict()]}


def data_response(name, data):
    return {"data": {name: data}}


def resolve_operation(query=None, operation_name=None):
    """Work out (name, kind) for a request.

    An explicit operation name wins. Otherwise the root field of the query
    text is used. The kind is None when the query text gives no hint, in
    which case it is not checked.
    """
    kind = None
    root_field = None
    if query is not None:
        if not isinstance(query, str):
            raise RoutingError("Query must be a string")
        match = _ROOT_FIELD.match(query)
        if match:
            kind = match.group(1) or QUERY
            root_field = match.group(2)

    if operation_name is not None:
        if not isinstance(operation_name, str):
            raise RoutingError("Operation must be a string")
        return operation_name, kind

    if root_field is None:
        raise RoutingError("Query not implemented")
    return root_field, kind


def dispatch(payload, actor_id=None):
    """Handle one request envelope and return one response envelope.

    ``actor_id`` is the identity from a verified token, if the caller sent
    one. Exactly one of ``data`` and ``errors`` is set on the result.
    """
    logger = current_app.logger
    try:
        name, kind = resolve_operation(payload.get('query'), payload.get('operation'))
        if name not in OPERATIONS:
            raise RoutingError("Query not implemented")

        op_kind, handler, needs_actor = OPERATIONS[name]
        if kind is not None and kind != op_kind:
            raise RoutingError(f"{name} must be sent as a {op_kind}")

        variables = payload.get('variables')
        if variables is None:
            variables = {}
        if not isinstance(variables, dict):
            raise RoutingError("Variables must be an object")

        logger.debug("Dispatching %s %s", op_kind, name)
        actor = resolve_actor(actor_id) if needs_actor else None
        return data_response(name, handler(variables, actor))

    except AppError as e:
        db.session.rollback()
        logger.info("%s: %s", type(e).__name__, e.message)
        return error_response(e)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Database error during dispatch")
        return error_response(StorageError(f"Database error: {e}"))
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected error during dispatch")
        return error_response(StorageError("Internal server error"))


# Acting user

def ensure_default_user():
    """Fetch the fallback actor, creating it on first use"""
    user = User.active().filter_by(id=current_app.config['DEFAULT_ACTOR_ID']).first()
    if user is None:
        user = User.query.filter_by(username=DEFAULT_USERNAME).first()
        if user is not None and user.is_deleted:
            # The username is still taken, so bring the row back instead
            current_app.logger.warning("Restoring soft-deleted fallback user %s", user.id)
            user.deleted_at = None
            commit()
    if user is None:
        user = User.create(
            username=DEFAULT_USERNAME,
            email=DEFAULT_EMAIL,
            password='password',
            name=DEFAULT_NAME,
        )
        current_app.logger.info("Created fallback user %s", user.id)
    return user


def resolve_actor(actor_id=None):
    if actor_id is not None:
        user = User.active().filter_by(id=int(actor_id)).first()
        if user is None:
            raise AuthenticationError("Token does not match an active user")
        return user
    if not current_app.config.get('ALLOW_FALLBACK_ACTOR', True):
        raise AuthenticationError("Authentication required")
    return ensure_default_user()


# Input parsing

def _input(variables):
    data = variables.get('input')
    if not isinstance(data, dict):
        raise RoutingError("Invalid input format")
    return data


def _string(data, key, required=True):
    value = data.get(key)
    if value is None:
        if required:
            raise RoutingError(f"{key} is required")
        return None
    if not isinstance(value, str):
        raise RoutingError(f"{key} must be a string")
    return value


def _identifier(data, key, required=True):
    value = data.get(key)
    if value is None:
        if required:
            raise RoutingError(f"{key} is required")
        return None
    # IDs may arrive as JSON numbers or as digit strings
    if isinstance(value, bool):
        raise RoutingError(f"{key} must be an integer")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise RoutingError(f"{key} must be an integer") from None
    elif isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise RoutingError(f"{key} must be an integer")
    if value <= 0:
        raise ValidationError(f"{key} must be a positive integer")
    if value > MAX_ID:
        raise RoutingError(f"{key} is out of range")
    return value


def _issue_token(user):
    return create_access_token(identity=str(user.id))


# Queries

@operation('users')
def list_users(variables, actor):
    users = User.active().order_by(User.id).all()
    return [user.to_dict() for user in users]


@operation('user')
def get_user(variables, actor):
    user_id = _identifier(variables, 'id')
    user = User.active().filter_by(id=user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    return user.to_dict(with_counts=True)


@operation('posts')
def list_posts(variables, actor):
    posts = Post.active()\
        .options(joinedload(Post.author))\
        .order_by(Post.created_at.desc(), Post.id.desc())\
        .all()
    return [post.to_dict(with_counts=True) for post in posts]


@operation('replies')
def list_replies(variables, actor):
    post_id = _identifier(variables, 'postId')
    if Post.active().filter_by(id=post_id).first() is None:
        raise NotFoundError("Post not found")
    replies = Post.active()\
        .options(joinedload(Post.author))\
        .filter_by(parent_id=post_id)\
        .order_by(Post.created_at.asc(), Post.id.asc())\
        .all()
    return [reply.to_dict(with_counts=True) for reply in replies]


# Mutations

@operation('register', kind=MUTATION)
def register(variables, actor):
    data = _input(variables)
    user = User.create(
        username=_string(data, 'username'),
        email=_string(data, 'email'),
        password=_string(data, 'password'),
        name=_string(data, 'name'),
        bio=_string(data, 'bio', required=False),
        avatar=_string(data, 'avatar', required=False),
    )
    current_app.logger.info("Registered user %s", user.id)
    return {"token": _issue_token(user), "user": user.to_dict()}


@operation('login', kind=MUTATION)
def login(variables, actor):
    data = _input(variables)
    username = _string(data, 'username')
    password = _string(data, 'password')

    user = User.active().filter_by(username=username).first()
    if user is None or not user.check_password(password):
        raise AuthenticationError("Invalid credentials")
    return {"token": _issue_token(user), "user": user.to_dict()}


@operation('updateProfile', kind=MUTATION, needs_actor=True)
def update_profile(variables, actor):
    data = _input(variables)
    actor.update_profile(
        name=_string(data, 'name', required=False),
        bio=_string(data, 'bio', required=False),
        avatar=_string(data, 'avatar', required=False),
    )
    return actor.to_dict()


@operation('createPost', kind=MUTATION, needs_actor=True)
def create_post(variables, actor):
    data = _input(variables)
    content = _string(data, 'content')
    parent_id = _identifier(data, 'parentId', required=False)

    post = Post.create(actor.id, content, parent_id=parent_id)
    post = Post.query.options(joinedload(Post.author)).filter_by(id=post.id).one()
    return post.to_dict()


@operation('deletePost', kind=MUTATION, needs_actor=True)
def delete_post(variables, actor):
    post_id = _identifier(_input(variables), 'postId')
    post = Post.active().filter_by(id=post_id).first()
    if post is None:
        raise NotFoundError("Post not found")
    if post.author_id != actor.id:
        raise ForbiddenError("You can only delete your own posts")
    post.soft_delete()
    return True


@operation('unlikePost', kind=MUTATION, needs_actor=True)
def unlike_post(variables, actor):
    post_id = _identifier(_input(variables), 'postId')
    Like.remove(actor.id, post_id)
    return True


@operation('likePost', kind=MUTATION, needs_actor=True)
def like_post(variables, actor):
    post_id = _identifier(_input(variables), 'postId')
    like = Like.create(actor.id, post_id)
    like = Like.query\
        .options(joinedload(Like.user), joinedload(Like.post))\
        .filter_by(id=like.id)\
        .one()
    return like.to_dict()


@operation('followUser', kind=MUTATION, needs_actor=True)
def follow_user(variables, actor):
    user_id = _identifier(_input(variables), 'userId')
    follow = Follow.create(actor.id, user_id)
    follow = Follow.query\
        .options(joinedload(Follow.follower), joinedload(Follow.followee))\
        .filter_by(id=follow.id)\
        .one()
    return follow.to_dict()


@operation('unfollowUser', kind=MUTATION, needs_actor=True)
def unfollow_user(variables, actor):
    user_id = _identifier(_input(variables), 'userId')
    Follow.remove(actor.id, user_id)
    return True
