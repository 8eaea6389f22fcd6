"""Shared fixtures: an application on a throwaway sqlite file and helpers
to seed it and drive forms through the test client."""

import re
import sqlite3
from urllib.parse import urlparse

import pytest
from jinja2 import DictLoader, Environment
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request

from linkboard import create_app
from linkboard.container import Container, ContainerOptions
from linkboard.database import connect, init_db
from linkboard.models import Comment, Thread, User
from linkboard.repositories import CommentRepository, ThreadRepository, UserRepository
from linkboard.response import ResponseWriter
from linkboard.session import CookieSessionStore

SECRET = "test-secret"
PAGE_SIZE = 3
PASSWORD = "password"


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "DATABASE": str(tmp_path / "linkboard.db"),
        "SECRET_KEY": SECRET,
        "STORIES_PER_PAGE": PAGE_SIZE,
        "LOG_LEVEL": "WARNING",
        "TESTING": True,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    conn = connect(app.config["DATABASE"])
    yield conn
    conn.close()


@pytest.fixture
def memory_db():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    init_db(conn)
    yield conn
    conn.close()


def create_user(conn, username="mike_doe", email=None, password=PASSWORD):
    user = User(username=username, email=email or f"{username}@acme.com")
    user.create_secure_password(password)
    return UserRepository(conn).save(user)


def create_thread(conn, author, title="A story", url="http://example.com/story", created_at=None):
    return ThreadRepository(conn).create(Thread(title=title, url=url, author_id=author.id, created_at=created_at))


def create_comment(conn, author, thread, parent=None, content="A comment"):
    return CommentRepository(conn).create(Comment(
        thread_id=thread.id,
        parent_id=parent.id if parent else None,
        author_id=author.id,
        content=content,
    ))


def extract_csrf(html: str, field: str) -> str:
    match = re.search(rf'name="{field}" value="([^"]*)"', html)
    assert match, f"{field} not found in page"
    return match.group(1)


def location_path(response) -> str:
    parsed = urlparse(response.headers["Location"])
    return parsed.path + (f"?{parsed.query}" if parsed.query else "") + (f"#{parsed.fragment}" if parsed.fragment else "")


def session_values(app, client) -> dict:
    cookie = client.get_cookie(app.config["SESSION_NAME"])
    if cookie is None:
        return {}
    return CookieSessionStore(SECRET).serializer.loads(cookie.value)


def login(client, username="mike_doe", password=PASSWORD):
    page = client.get("/login").get_data(as_text=True)
    return client.post("/login", data={
        "login_username": username,
        "login_password": password,
        "login_csrf": extract_csrf(page, "login_csrf"),
    })


@pytest.fixture
def make_container(memory_db):
    """Build a container around a bare werkzeug request, outside Flask."""

    def factory(path="/", debug=False, **overrides):
        env = Environment(loader=DictLoader({
            "error.html": '<p class="error-message">{{ error.status }} {{ error.message }}</p>',
            "hello.html": "hello {{ name }}",
            "broken.html": "{{ missing.attribute.lookup }}",
        }))
        store = CookieSessionStore(SECRET)
        options = ContainerOptions(
            secret=SECRET,
            debug=debug,
            connection_factory=lambda: memory_db,
            session_store_factory=lambda: store,
            template_environment=env,
        )
        for key, value in overrides.items():
            setattr(options, key, value)
        request = Request(EnvironBuilder(path=path).get_environ())
        return Container(options, request, ResponseWriter())

    return factory
