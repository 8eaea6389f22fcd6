import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer
from werkzeug.wrappers import Request, Response

logger = logging.getLogger(__name__)

FLASH_PREFIX = "_flash."


@dataclass
class SessionOptions:
    path: str = "/"
    http_only: bool = True
    max_age: int = 60 * 60 * 24
    domain: Optional[str] = None
    secure: bool = False


class Session:
    """Typed key/value view over one user agent's session.

    Values must be JSON serializable. Nothing reaches the client until
    `save` is called with the outgoing response.
    """

    def __init__(self, store: "SessionStore", name: str, values: Optional[Dict[str, Any]] = None, is_new: bool = True):
        self.store = store
        self.name = name
        self.options = SessionOptions()
        self.is_new = is_new
        self.modified = False
        self._values: Dict[str, Any] = dict(values or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        self.modified = True

    def has(self, key: str) -> bool:
        return key in self._values

    def delete(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self.modified = True

    def values(self) -> Dict[str, Any]:
        return dict(self._values)

    def add_flash(self, message: str, category: str = "info") -> None:
        key = FLASH_PREFIX + category
        self._values[key] = list(self._values.get(key, [])) + [message]
        self.modified = True

    def flashes(self, category: str = "info") -> List[str]:
        """Return and consume the flash messages stored under `category`."""
        messages = self._values.pop(FLASH_PREFIX + category, None)
        if messages is None:
            return []
        self.modified = True
        return list(messages)

    def save(self, response: Response) -> None:
        self.store.save(self, response)


class SessionStore:
    """Loads a named session from a request and writes it to a response."""

    def get(self, request: Request, name: str) -> Session:
        raise NotImplementedError

    def save(self, session: Session, response: Response) -> None:
        raise NotImplementedError


class CookieSessionStore(SessionStore):
    """Keeps the whole session in a signed cookie."""

    salt = "linkboard-session"

    def __init__(self, secret_key: str, max_age: int = 60 * 60 * 24):
        if not secret_key:
            raise ValueError("a secret key is required to sign session cookies")
        self.serializer = URLSafeTimedSerializer(secret_key, salt=self.salt)
        self.max_age = max_age

    def get(self, request: Request, name: str) -> Session:
        raw = request.cookies.get(name)
        if not raw:
            return Session(self, name)
        try:
            values = self.serializer.loads(raw, max_age=self.max_age)
        except BadSignature:
            # tampered or expired; start over rather than fail the request
            logger.warning("discarding invalid session cookie %r", name)
            return Session(self, name)
        if not isinstance(values, dict):
            return Session(self, name)
        return Session(self, name, values, is_new=False)

    def save(self, session: Session, response: Response) -> None:
        opts = session.options
        if opts.max_age < 0:
            response.delete_cookie(session.name, path=opts.path, domain=opts.domain)
            return
        response.set_cookie(
            session.name,
            self.serializer.dumps(session.values()),
            max_age=opts.max_age,
            path=opts.path,
            domain=opts.domain,
            secure=opts.secure,
            httponly=opts.http_only,
            samesite="Lax",
        )
