import logging
from typing import Optional, Union

from werkzeug.wrappers import Response

from linkboard.session import Session


class ResponseWriter:
    """Wraps the outgoing response and tracks whether body bytes went out.

    The attached session is saved exactly once, just before the first
    body write, or by an explicit `save_session` call, whichever
    comes first.
    """

    def __init__(self, response: Optional[Response] = None, logger: Optional[logging.Logger] = None):
        self.response = response if response is not None else Response(mimetype="text/html")
        self.logger = logger or logging.getLogger(__name__)
        self.session: Optional[Session] = None
        self.current_size = 0
        self._written = False
        self._session_saved = False

    @property
    def status(self) -> int:
        return self.response.status_code

    def has_session(self) -> bool:
        return self.session is not None

    def set_session(self, session: Session) -> None:
        self.session = session

    def is_response_written(self) -> bool:
        return self._written

    def write_header(self, status: int) -> None:
        if self._written:
            self.logger.warning("status %d ignored, response body already started", status)
            return
        self.response.status_code = status

    def save_session(self) -> bool:
        """Persist the session into the response headers, at most once.

        Returns True if this call performed the save.
        """
        if self._session_saved:
            return False
        self._session_saved = True
        if self.session is None:
            self.logger.debug("no session attached, nothing to save")
            return False
        try:
            self.session.save(self.response)
        except Exception:
            self.logger.exception("error saving the session")
            return False
        return True

    def write(self, data: Union[str, bytes]) -> int:
        self.save_session()
        if isinstance(data, str):
            data = data.encode("utf-8")
        size = self.response.stream.write(data)
        self._written = True
        self.current_size += size
        return size

    def redirect(self, location: str, status: int = 302) -> None:
        self.response.status_code = status
        self.response.headers["Location"] = location

    def finalize(self) -> Response:
        """Return the underlying response, flushing the session if still pending."""
        self.save_session()
        return self.response
