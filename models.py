# Database models
from datetime import datetime, timezone

from flask_bcrypt import Bcrypt
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import ConflictError, NotFoundError, StorageError, ValidationError

db = SQLAlchemy()
bcrypt = Bcrypt()

MAX_POST_LENGTH = 280


def utcnow():
    # Naive UTC, matching what the DateTime columns store
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() if value else None


def commit(conflict_message="Record already exists"):
    """Commit the session, translating store failures into app errors.

    The session is rolled back on any failure so that nothing from the
    failed operation is left pending.
    """
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError(conflict_message) from e
    except ValidationError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Database error: {e}") from e


def save(instance, conflict_message="Record already exists"):
    instance.validate()
    db.session.add(instance)
    commit(conflict_message)
    return instance


class SoftDeleteMixin:
    deleted_at = db.Column(db.DateTime, index=True)

    @classmethod
    def active(cls):
        """Query over rows that have not been soft-deleted"""
        return cls.query.filter(cls.deleted_at.is_(None))

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def soft_delete(self):
        self.deleted_at = utcnow()
        commit()


class User(SoftDeleteMixin, db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False)
    email = db.Column(db.String(100), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    bio = db.Column(db.Text)
    avatar = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    posts = db.relationship('Post', backref='author', lazy='dynamic')
    likes = db.relationship('Like', backref='user', lazy='dynamic')
    following = db.relationship('Follow', foreign_keys='Follow.follower_id',
                                backref='follower', lazy='dynamic')
    followers = db.relationship('Follow', foreign_keys='Follow.followee_id',
                                backref='followee', lazy='dynamic')

    @classmethod
    def create(cls, username, email, password, name, bio=None, avatar=None):
        user = cls(username=username, email=email, name=name, bio=bio, avatar=avatar)
        user.validate()
        if not password:
            raise ValidationError("password is required")
        user.set_password(password)
        return save(user, conflict_message="Username or email already exists")

    def validate(self):
        if not (self.username or '').strip():
            raise ValidationError("username is required")
        if not (self.email or '').strip():
            raise ValidationError("email is required")
        if not (self.name or '').strip():
            raise ValidationError("name is required")

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def update_profile(self, name=None, bio=None, avatar=None):
        if name is not None:
            self.name = name
        if bio is not None:
            self.bio = bio
        if avatar is not None:
            self.avatar = avatar
        self.validate()
        commit()
        return self

    def follower_count(self):
        return Follow.query.filter_by(followee_id=self.id).count()

    def following_count(self):
        return Follow.query.filter_by(follower_id=self.id).count()

    def post_count(self):
        return Post.active().filter_by(author_id=self.id).count()

    def to_dict(self, with_counts=False):
        # password_hash and deleted_at never leave the model
        data = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "name": self.name,
            "bio": self.bio,
            "avatar": self.avatar,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
        if with_counts:
            data["followerCount"] = self.follower_count()
            data["followingCount"] = self.following_count()
            data["postCount"] = self.post_count()
        return data


class Post(SoftDeleteMixin, db.Model):
    __tablename__ = 'posts'
    id = db.Column(db.Integer, primary_key=True)
    content = db.Column(db.String(MAX_POST_LENGTH), nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('posts.id'), index=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    replies = db.relationship('Post', backref=db.backref('parent', remote_side=[id]),
                              lazy='dynamic')
    # Soft-deleting a post leaves its likes in place
    likes = db.relationship('Like', backref='post', lazy='dynamic')

    @classmethod
    def create(cls, author_id, content, parent_id=None):
        post = cls(content=content, author_id=author_id, parent_id=parent_id)
        post.validate()
        if User.active().filter_by(id=author_id).first() is None:
            raise ValidationError("author does not exist")
        if parent_id is not None and Post.active().filter_by(id=parent_id).first() is None:
            raise NotFoundError("Parent post not found")
        return save(post)

    def validate(self):
        content = self.content or ''
        if not content.strip():
            raise ValidationError("content cannot be empty")
        # len() counts code points, not bytes
        if len(content) > MAX_POST_LENGTH:
            raise ValidationError(f"content exceeds {MAX_POST_LENGTH} characters")
        if not self.author_id:
            raise ValidationError("author ID is required")

    def like_count(self):
        return Like.query.filter_by(post_id=self.id).count()

    def reply_count(self):
        return Post.active().filter_by(parent_id=self.id).count()

    def is_liked_by(self, user_id):
        return Like.query.filter_by(post_id=self.id, user_id=user_id).first() is not None

    def to_dict(self, include_author=True, with_counts=False):
        data = {
            "id": self.id,
            "content": self.content,
            "authorId": self.author_id,
            "parentId": self.parent_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
        if include_author:
            data["author"] = self.author.to_dict() if self.author else None
        if with_counts:
            data["likeCount"] = self.like_count()
            data["replyCount"] = self.reply_count()
        return data


class Like(db.Model):
    __tablename__ = 'likes'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (db.UniqueConstraint('user_id', 'post_id', name='uq_like_user_post'),)

    @classmethod
    def create(cls, user_id, post_id):
        like = cls(user_id=user_id, post_id=post_id)
        like.validate()
        if Post.active().filter_by(id=post_id).first() is None:
            raise NotFoundError("Post not found")
        return save(like, conflict_message="Post already liked")

    @classmethod
    def remove(cls, user_id, post_id):
        """Hard-delete the like, if there is one"""
        deleted = cls.query.filter_by(user_id=user_id, post_id=post_id).delete()
        if not deleted:
            db.session.rollback()
            raise NotFoundError("Like not found")
        commit()

    def validate(self):
        if not self.user_id:
            raise ValidationError("user ID is required")
        if not self.post_id:
            raise ValidationError("post ID is required")

    def to_dict(self, include_relations=True):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "postId": self.post_id,
            "createdAt": isoformat(self.created_at),
        }
        if include_relations:
            data["user"] = self.user.to_dict() if self.user else None
            data["post"] = self.post.to_dict(include_author=False) if self.post else None
        return data


class Follow(db.Model):
    __tablename__ = 'follows'
    id = db.Column(db.Integer, primary_key=True)
    follower_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    followee_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint('follower_id', 'followee_id', name='uq_follow_pair'),
        db.CheckConstraint('follower_id <> followee_id', name='ck_follow_not_self'),
    )

    @classmethod
    def create(cls, follower_id, followee_id):
        follow = cls(follower_id=follower_id, followee_id=followee_id)
        follow.validate()
        if User.active().filter_by(id=followee_id).first() is None:
            raise NotFoundError("User not found")
        return save(follow, conflict_message="Already following this user")

    @classmethod
    def remove(cls, follower_id, followee_id):
        deleted = cls.query.filter_by(follower_id=follower_id, followee_id=followee_id).delete()
        if not deleted:
            db.session.rollback()
            raise NotFoundError("Follow not found")
        commit()

    def is_valid(self):
        return self.follower_id != self.followee_id

    def validate(self):
        if not self.follower_id:
            raise ValidationError("follower ID is required")
        if not self.followee_id:
            raise ValidationError("followee ID is required")
        if not self.is_valid():
            raise ValidationError("cannot follow yourself")

    def to_dict(self, include_relations=True):
        data = {
            "id": self.id,
            "followerId": self.follower_id,
            "followeeId": self.followee_id,
            "createdAt": isoformat(self.created_at),
        }
        if include_relations:
            data["follower"] = self.follower.to_dict() if self.follower else None
            data["followee"] = self.followee.to_dict() if self.followee else None
        return data


def _validate_before_insert(mapper, connection, target):
    target.validate()


# Rows added to the session directly still go through validation
for _model in (User, Post, Like, Follow):
    event.listen(_model, 'before_insert', _validate_before_insert)
