"""
Model invariants, soft deletion and derived counts.
"""

import pytest

from errors import ConflictError, NotFoundError, ValidationError
from models import db, commit, User, Post, Like, Follow, MAX_POST_LENGTH


# =============================================================================
# User
# =============================================================================

class TestUser:

    def test_create_hashes_password(self, make_user):
        user = make_user("alice", password="s3cret")

        assert user.id is not None
        assert user.password_hash != "s3cret"
        assert user.check_password("s3cret")
        assert not user.check_password("wrong")

    @pytest.mark.parametrize("field", ["username", "email", "name"])
    def test_required_fields(self, app, field):
        values = {"username": "bob", "email": "bob@example.com", "name": "Bob"}
        values[field] = ""

        with pytest.raises(ValidationError, match=f"{field} is required"):
            User.create(password="pw", **values)
        assert User.query.count() == 0

    def test_password_required(self, app):
        with pytest.raises(ValidationError):
            User.create(username="bob", email="bob@example.com", password="", name="Bob")

    def test_duplicate_username_conflicts(self, make_user):
        make_user("alice", email="one@example.com")
        with pytest.raises(ConflictError):
            make_user("alice", email="two@example.com")
        assert User.query.count() == 1

    def test_duplicate_email_conflicts(self, make_user):
        make_user("alice", email="same@example.com")
        with pytest.raises(ConflictError):
            make_user("alicia", email="same@example.com")

    def test_to_dict_hides_secrets(self, make_user):
        data = make_user("alice").to_dict()

        assert data["username"] == "alice"
        assert "password_hash" not in data
        assert "password" not in data
        assert "deleted_at" not in data
        assert "deletedAt" not in data

    def test_soft_delete_hides_user(self, make_user):
        alice = make_user("alice")
        make_user("bob")

        alice.soft_delete()

        assert alice.is_deleted
        assert db.session.get(User, alice.id) is not None
        assert [u.username for u in User.active().all()] == ["bob"]

    def test_update_profile(self, make_user):
        alice = make_user("alice")
        alice.update_profile(bio="Hello there", avatar="a.png")

        assert alice.bio == "Hello there"
        assert alice.avatar == "a.png"
        with pytest.raises(ValidationError):
            alice.update_profile(name="  ")


# =============================================================================
# Post
# =============================================================================

class TestPost:

    def test_create_post(self, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice, "hello")

        assert post.id is not None
        assert post.author.username == "alice"
        assert post.parent_id is None

    def test_content_at_limit(self, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice, "😀" * MAX_POST_LENGTH)
        assert len(post.content) == MAX_POST_LENGTH

    def test_content_over_limit(self, make_user, make_post):
        alice = make_user("alice")
        with pytest.raises(ValidationError, match="exceeds"):
            make_post(alice, "a" * (MAX_POST_LENGTH + 1))
        assert Post.query.count() == 0

    @pytest.mark.parametrize("content", ["", "   ", "\n\t "])
    def test_blank_content(self, make_user, make_post, content):
        alice = make_user("alice")
        with pytest.raises(ValidationError, match="content cannot be empty"):
            make_post(alice, content)
        assert Post.query.count() == 0

    def test_author_required(self, app):
        with pytest.raises(ValidationError, match="author ID is required"):
            Post.create(None, "hello")

    def test_author_must_exist(self, app):
        with pytest.raises(ValidationError, match="author does not exist"):
            Post.create(42, "hello")

    def test_reply_to_missing_parent(self, make_user):
        alice = make_user("alice")
        with pytest.raises(NotFoundError):
            Post.create(alice.id, "reply", parent_id=999)

    def test_direct_insert_is_validated(self, make_user):
        alice = make_user("alice")
        db.session.add(Post(content="  ", author_id=alice.id))

        with pytest.raises(ValidationError):
            commit()
        assert Post.query.count() == 0

    def test_replies(self, make_user, make_post):
        alice = make_user("alice")
        root = make_post(alice, "root")
        reply = make_post(alice, "reply", parent=root)

        assert reply.parent.id == root.id
        assert [p.id for p in root.replies] == [reply.id]
        assert root.reply_count() == 1

    def test_soft_delete_keeps_likes(self, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice)
        Like.create(alice.id, post.id)

        post.soft_delete()

        assert Post.active().count() == 0
        assert Like.query.filter_by(post_id=post.id).count() == 1
        assert alice.post_count() == 0


# =============================================================================
# Like
# =============================================================================

class TestLike:

    def test_like_once(self, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice)

        like = Like.create(alice.id, post.id)

        assert like.id is not None
        assert like.user.username == "alice"
        assert post.is_liked_by(alice.id)

    def test_duplicate_like_conflicts(self, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice)
        Like.create(alice.id, post.id)

        with pytest.raises(ConflictError):
            Like.create(alice.id, post.id)
        assert Like.query.count() == 1

    @pytest.mark.parametrize("user_id, post_id", [(0, 1), (1, 0)])
    def test_ids_required(self, app, user_id, post_id):
        with pytest.raises(ValidationError):
            Like.create(user_id, post_id)

    def test_like_missing_post(self, make_user):
        alice = make_user("alice")
        with pytest.raises(NotFoundError, match="Post not found"):
            Like.create(alice.id, 999)

    def test_remove_missing_like(self, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice)

        with pytest.raises(NotFoundError, match="Like not found"):
            Like.remove(alice.id, post.id)
        assert Like.query.count() == 0

    def test_remove_is_hard_delete(self, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice)
        Like.create(alice.id, post.id)

        Like.remove(alice.id, post.id)

        assert Like.query.count() == 0
        assert not post.is_liked_by(alice.id)


# =============================================================================
# Follow
# =============================================================================

class TestFollow:

    def test_follow(self, make_user):
        alice = make_user("alice")
        bob = make_user("bob")

        follow = Follow.create(alice.id, bob.id)

        assert follow.follower.username == "alice"
        assert follow.followee.username == "bob"

    @pytest.mark.parametrize("user_id", [1, 2, 99])
    def test_self_follow_rejected(self, make_user, user_id):
        make_user("alice")
        make_user("bob")

        with pytest.raises(ValidationError, match="cannot follow yourself"):
            Follow.create(user_id, user_id)
        assert Follow.query.count() == 0

    @pytest.mark.parametrize("follower_id, followee_id", [(0, 2), (1, 0)])
    def test_ids_required(self, app, follower_id, followee_id):
        with pytest.raises(ValidationError):
            Follow.create(follower_id, followee_id)

    def test_is_valid(self):
        assert Follow(follower_id=1, followee_id=2).is_valid()
        assert not Follow(follower_id=1, followee_id=1).is_valid()

    def test_duplicate_follow_conflicts(self, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        Follow.create(alice.id, bob.id)

        with pytest.raises(ConflictError):
            Follow.create(alice.id, bob.id)
        assert Follow.query.count() == 1

    def test_follow_missing_user(self, make_user):
        alice = make_user("alice")
        with pytest.raises(NotFoundError):
            Follow.create(alice.id, 999)

    def test_unfollow(self, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        Follow.create(alice.id, bob.id)

        Follow.remove(alice.id, bob.id)

        assert Follow.query.count() == 0
        with pytest.raises(NotFoundError):
            Follow.remove(alice.id, bob.id)


# =============================================================================
# Derived counts
# =============================================================================

class TestCounts:

    def test_counts_start_at_zero(self, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice)

        assert alice.follower_count() == 0
        assert alice.following_count() == 0
        assert post.like_count() == 0
        assert post.reply_count() == 0
        assert not post.is_liked_by(alice.id)
        assert alice.post_count() == 1

    @pytest.mark.parametrize("created, removed", [(0, 0), (1, 0), (3, 1), (4, 4)])
    def test_follow_counts(self, make_user, created, removed):
        target = make_user("target")
        fans = [make_user(f"fan{i}") for i in range(created)]
        for fan in fans:
            Follow.create(fan.id, target.id)
        for fan in fans[:removed]:
            Follow.remove(fan.id, target.id)

        assert target.follower_count() == created - removed
        for fan in fans[removed:]:
            assert fan.following_count() == 1

    @pytest.mark.parametrize("created, removed", [(0, 0), (2, 1), (3, 3)])
    def test_like_counts(self, make_user, make_post, created, removed):
        author = make_user("author")
        post = make_post(author)
        likers = [make_user(f"liker{i}") for i in range(created)]
        for liker in likers:
            Like.create(liker.id, post.id)
        for liker in likers[:removed]:
            Like.remove(liker.id, post.id)

        assert post.like_count() == created - removed

    @pytest.mark.parametrize("created, removed", [(0, 0), (3, 2)])
    def test_reply_counts(self, make_user, make_post, created, removed):
        author = make_user("author")
        root = make_post(author, "root")
        replies = [make_post(author, f"reply {i}", parent=root) for i in range(created)]
        for reply in replies[:removed]:
            reply.soft_delete()

        assert root.reply_count() == created - removed
