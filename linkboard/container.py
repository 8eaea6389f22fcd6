"""Request scoped service container.

One ``Container`` is built per request from ``ContainerOptions`` holding
the already resolved collaborators (connection factory, secret, page
size...). Services are created on first use and cached for the rest of
the request; nothing here is shared between requests.

Accessors named ``get_*`` either return the service or raise
``ContainerError``. That error means the application is misconfigured,
controllers let it propagate instead of turning it into a user message.
"""

import logging
import secrets
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from jinja2 import Environment, TemplateError
from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.wrappers import Request

from linkboard.csrf import DEFAULT_TIMEOUT, CSRFGenerator, SubjectCSRF
from linkboard.exceptions import ContainerError
from linkboard.models import User
from linkboard.repositories import CommentRepository, ThreadRepository, UserRepository
from linkboard.response import ResponseWriter
from linkboard.session import Session, SessionStore
from linkboard.templating import TemplateEngine

SESSION_USER_KEY = "user.ID"
SESSION_CSRF_SUBJECT_KEY = "csrf.subject"

_UNSET = object()


@dataclass
class ContainerOptions:
    secret: str = ""
    debug: bool = False
    stories_per_page: int = 30
    title: str = "linkboard"
    slogan: str = ""
    description: str = ""
    session_name: str = "linkboard"
    session_max_age: int = 60 * 60 * 24
    session_domain: Optional[str] = None
    session_secure: bool = False
    csrf_timeout: int = DEFAULT_TIMEOUT
    connection_factory: Optional[Callable[[], sqlite3.Connection]] = None
    logger_factory: Optional[Callable[[], logging.Logger]] = None
    session_store_factory: Optional[Callable[[], SessionStore]] = None
    template_environment: Optional[Environment] = None
    template_globals: Dict[str, Any] = field(default_factory=dict)


class Container:
    def __init__(self, options: ContainerOptions, request: Request, response: ResponseWriter):
        self.options = options
        self.request = request
        self.response = response
        self._services: Dict[str, Any] = {}
        self._user: Any = _UNSET

    @property
    def debug(self) -> bool:
        return self.options.debug

    @property
    def stories_per_page(self) -> int:
        return self.options.stories_per_page

    def _provide(self, name: str, build: Callable[[], Any]) -> Any:
        if name not in self._services:
            try:
                self._services[name] = build()
            except ContainerError:
                raise
            except Exception as exc:
                raise ContainerError(name, exc) from exc
        return self._services[name]

    # infrastructure

    def get_connection(self) -> sqlite3.Connection:
        def build():
            if self.options.connection_factory is None:
                raise ContainerError("connection", ValueError("no connection factory configured"))
            return self.options.connection_factory()

        return self._provide("connection", build)

    def get_logger(self) -> logging.Logger:
        def build():
            if self.options.logger_factory is not None:
                logger = self.options.logger_factory()
            else:
                logger = logging.getLogger("linkboard")
            self.response.logger = logger
            return logger

        return self._provide("logger", build)

    def get_thread_repository(self) -> ThreadRepository:
        return self._provide("thread_repository", lambda: ThreadRepository(self.get_connection(), self.get_logger()))

    def get_user_repository(self) -> UserRepository:
        return self._provide("user_repository", lambda: UserRepository(self.get_connection(), self.get_logger()))

    def get_comment_repository(self) -> CommentRepository:
        return self._provide("comment_repository", lambda: CommentRepository(self.get_connection(), self.get_logger()))

    def get_session_store(self) -> SessionStore:
        def build():
            if self.options.session_store_factory is None:
                raise ContainerError("session_store", ValueError("no session store factory configured"))
            return self.options.session_store_factory()

        return self._provide("session_store", build)

    def get_session(self) -> Session:
        def build():
            session = self.get_session_store().get(self.request, self.options.session_name)
            session.options.path = "/"
            session.options.http_only = True
            session.options.max_age = self.options.session_max_age
            session.options.domain = self.options.session_domain
            session.options.secure = self.options.session_secure
            self.response.set_session(session)
            return session

        return self._provide("session", build)

    def get_csrf(self) -> SubjectCSRF:
        def build():
            session = self.get_session()
            subject = session.get(SESSION_CSRF_SUBJECT_KEY)
            if not subject:
                subject = secrets.token_hex(16)
                session.set(SESSION_CSRF_SUBJECT_KEY, subject)
            generator = CSRFGenerator(self.options.secret, timeout=self.options.csrf_timeout)
            return SubjectCSRF(generator, subject)

        return self._provide("csrf", build)

    def get_template(self) -> TemplateEngine:
        def build():
            if self.options.template_environment is None:
                raise ContainerError("template", ValueError("no template environment configured"))
            template_globals = {
                "site": {
                    "title": self.options.title,
                    "slogan": self.options.slogan,
                    "description": self.options.description,
                },
                "is_debug": self.debug,
                "current_user": self.current_user(),
                "flashes": self.get_session().flashes,
            }
            template_globals.update(self.options.template_globals)
            return TemplateEngine(self.options.template_environment, template_globals)

        return self._provide("template", build)

    # authenticated user

    def current_user(self) -> Optional[User]:
        """The user whose id is stored in the session, loaded once."""
        if self._user is _UNSET:
            user = None
            session = self.get_session()
            user_id = session.get(SESSION_USER_KEY)
            if user_id is not None:
                user = self.get_user_repository().get_by_id(int(user_id))
                if user is None:
                    # account vanished, forget the stale id
                    session.delete(SESSION_USER_KEY)
            self._user = user
        return self._user

    def set_current_user(self, user: Optional[User]) -> None:
        self._user = user

    def has_authenticated_user(self) -> bool:
        return self.current_user() is not None

    # responses

    def render(self, name: str, context: Optional[Mapping[str, Any]] = None, status: Optional[int] = None) -> None:
        """Render `name` into the response, answering 500 on template errors."""
        if status is not None:
            self.response.write_header(status)
        try:
            self.get_template().execute_template(self.response, name, context)
        except TemplateError as exc:
            self.http_error(500, exc)

    def http_redirect(self, url: str, status: int = 302) -> None:
        """Redirect, saving the session first so flashes and login survive."""
        try:
            self.get_session()
        except ContainerError as exc:
            self.get_logger().error("redirect without session: %s", exc)
        else:
            self.response.save_session()
        self.response.redirect(url, status)

    def http_error(self, status: int, message: Any) -> None:
        """Log `message` and answer `status`.

        The detailed message is only shown in debug mode. When body bytes
        have already been sent only a short plain line is appended.
        """
        self.get_logger().error("%s %d %s", self.request.url, status, message)
        status_text = HTTP_STATUS_CODES.get(status, "Unknown Error")
        shown = str(message) if self.debug else status_text
        rw = self.response
        if rw.is_response_written():
            rw.write(f"\n{shown}\n")
            return
        rw.write_header(status)
        try:
            self.get_template().execute_template(
                rw,
                "error.html",
                {"title": status_text, "error": {"status": status, "message": shown}},
            )
        except TemplateError as exc:
            self.get_logger().error("error page failed to render: %s", exc)
            rw.response.mimetype = "text/plain"
            rw.write(shown)
