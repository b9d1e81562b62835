"""
Pytest fixtures: an app on in-memory SQLite, its test client, and
small factories for users and posts.
"""

import pytest

from app import create_app
from models import db, User, Post


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(username, email=None, name=None, password='test_password'):
        return User.create(
            username=username,
            email=email or f"{username}@example.com",
            password=password,
            name=name or username.title(),
            bio="Test user bio",
        )
    return _make_user


@pytest.fixture
def make_post(app):
    def _make_post(author, content="Test post content", parent=None):
        return Post.create(author.id, content, parent_id=parent.id if parent else None)
    return _make_post


@pytest.fixture
def run_query(client):
    """POST one envelope to /query and return the decoded response."""
    def _run_query(query=None, variables=None, operation=None, token=None):
        payload = {}
        if query is not None:
            payload["query"] = query
        if variables is not None:
            payload["variables"] = variables
        if operation is not None:
            payload["operation"] = operation
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        response = client.post('/query', json=payload, headers=headers)
        assert response.status_code == 200
        return response.get_json()
    return _run_query
