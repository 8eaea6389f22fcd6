import logging
import os
import secrets
import sys
import time
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from flask import Flask, g, request
from werkzeug.wrappers import Response

from linkboard import controllers
from linkboard.container import Container, ContainerOptions
from linkboard.database import close_db, connect, get_db, init_db
from linkboard.exceptions import ContainerError, DatabaseError
from linkboard.response import ResponseWriter
from linkboard.session import CookieSessionStore
from linkboard.templating import register_filters

access_logger = logging.getLogger("linkboard.access")

TRUTHY = {"1", "true", "yes", "on"}


def _get_persistent_secret(db_path_str: str) -> str:
    """Return a stable secret key.

    Priority:
    1) SECRET_KEY env var if provided and non-empty.
    2) Read from a file located alongside the database file.
    3) Generate a new one, write it to that file, and use it.
    If the file cannot be written the key is volatile (sessions reset on restart).
    """
    sk = os.environ.get("SECRET_KEY", "").strip()
    if sk:
        return sk

    base = Path(db_path_str).parent
    secret_file = base / "secret_key"
    if secret_file.exists():
        try:
            stored = secret_file.read_text(encoding="utf-8").strip()
        except OSError:
            stored = ""
        if stored:
            return stored

    new_sk = secrets.token_hex(32)
    try:
        base.mkdir(parents=True, exist_ok=True)
        secret_file.write_text(new_sk, encoding="utf-8")
        os.chmod(secret_file, 0o600)
    except OSError:
        logging.getLogger("linkboard").warning("could not persist secret key to %s", secret_file)
    return new_sk


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def container_options(app: Flask) -> ContainerOptions:
    cfg = app.config
    store = CookieSessionStore(cfg["SECRET_KEY"], max_age=cfg["SESSION_MAX_AGE"])
    return ContainerOptions(
        secret=cfg["SECRET_KEY"],
        debug=cfg["DEBUG_ERRORS"],
        stories_per_page=cfg["STORIES_PER_PAGE"],
        title=cfg["SITE_TITLE"],
        slogan=cfg["SITE_SLOGAN"],
        description=cfg["SITE_DESCRIPTION"],
        session_name=cfg["SESSION_NAME"],
        session_max_age=cfg["SESSION_MAX_AGE"],
        csrf_timeout=cfg["CSRF_TIMEOUT"],
        connection_factory=get_db,
        logger_factory=lambda: app.logger,
        session_store_factory=lambda: store,
        template_environment=app.jinja_env,
    )


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(
        __name__,
        static_folder="static",
        template_folder="templates",
    )

    db_path = os.environ.get("LINKBOARD_DB_PATH", "linkboard.db")
    app.config.update(
        DATABASE=db_path,
        MAX_CONTENT_LENGTH=256 * 1024,  # 256 KB per request
        TEMPLATES_AUTO_RELOAD=True,
        STORIES_PER_PAGE=_env_int("STORIES_PER_PAGE", 30),
        DEBUG_ERRORS=os.environ.get("LINKBOARD_DEBUG", "0").lower() in TRUTHY,
        SESSION_NAME=os.environ.get("SESSION_NAME", "linkboard"),
        SESSION_MAX_AGE=_env_int("SESSION_MAX_AGE", 60 * 60 * 24),
        CSRF_TIMEOUT=_env_int("CSRF_TIMEOUT", 60 * 60 * 24),
        LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO"),
        SITE_TITLE=os.environ.get("SITE_TITLE", "linkboard"),
        SITE_SLOGAN=os.environ.get("SITE_SLOGAN", "links worth discussing"),
        SITE_DESCRIPTION=os.environ.get("SITE_DESCRIPTION", "A place to share and discuss links"),
    )
    if test_config:
        app.config.update(test_config)
    if not app.config.get("SECRET_KEY"):
        app.config["SECRET_KEY"] = _get_persistent_secret(app.config["DATABASE"])

    setup_logging(app.config["LOG_LEVEL"])
    app.logger.setLevel(logging.DEBUG if app.config["DEBUG_ERRORS"] else app.config["LOG_LEVEL"].upper())

    # Ensure data folder exists if using a nested path
    db_dir = Path(app.config["DATABASE"]).parent
    if not db_dir.exists():
        db_dir.mkdir(parents=True, exist_ok=True)

    app.teardown_appcontext(close_db)
    register_filters(app.jinja_env)

    options = container_options(app)

    def dispatch(controller: Callable) -> Callable[..., Response]:
        @wraps(controller)
        def view(**_kwargs) -> Response:
            rw = ResponseWriter(Response(mimetype="text/html"), app.logger)
            c = Container(options, request._get_current_object(), rw)
            controller(c, c.request, rw, lambda: None)
            return rw.finalize()

        return view

    routes = [
        ("/", "index", controllers.stories_by_score_controller, ["GET"]),
        ("/newest", "newest", controllers.new_stories_controller, ["GET"]),
        ("/domain", "domain", controllers.stories_by_domain_controller, ["GET"]),
        ("/submitted", "submitted", controllers.stories_by_author_controller, ["GET"]),
        ("/threads", "threads", controllers.author_comments_controller, ["GET"]),
        ("/newcomments", "newcomments", controllers.new_comments_controller, ["GET"]),
        ("/user", "user", controllers.user_profile_controller, ["GET"]),
        ("/thread", "thread", controllers.story_by_id_controller, ["GET", "POST"]),
        ("/item", "item", controllers.story_by_id_controller, ["GET", "POST"]),
        ("/login", "login", controllers.login_controller, ["GET", "POST"]),
        ("/logout", "logout", controllers.logout_controller, ["POST"]),
        ("/register", "register", controllers.registration_controller, ["GET", "POST"]),
        ("/submit", "submit", controllers.submit_story_controller, ["GET", "POST"]),
        ("/comment", "comment", controllers.reply_controller, ["GET", "POST"]),
        ("/vote", "vote", controllers.vote_controller, ["POST"]),
    ]
    for rule, endpoint, controller, methods in routes:
        app.add_url_rule(rule, endpoint, dispatch(controller), methods=methods)

    not_found_view = dispatch(controllers.not_found_controller)

    @app.errorhandler(404)
    def not_found(_error):
        return not_found_view()

    @app.errorhandler(ContainerError)
    def container_failure(error: ContainerError):
        app.logger.error("%s %s: %s", request.method, request.path, error, exc_info=error)
        return Response("Internal Server Error", status=500, mimetype="text/plain")

    @app.errorhandler(DatabaseError)
    def database_failure(error: DatabaseError):
        app.logger.error("%s %s: %s %r", request.method, request.path, error, error.context)
        return Response("Internal Server Error", status=500, mimetype="text/plain")

    @app.before_request
    def start_timer() -> None:
        g.started_at = time.perf_counter()

    @app.after_request
    def set_security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "same-origin")
        started = g.get("started_at")
        duration_ms = (time.perf_counter() - started) * 1000 if started else 0.0
        access_logger.info("%s %s %d %.2fms", request.method, request.full_path.rstrip("?"), resp.status_code, duration_ms)
        return resp

    # Initialize DB on first run
    conn = connect(app.config["DATABASE"])
    try:
        init_db(conn)
    finally:
        conn.close()

    return app
