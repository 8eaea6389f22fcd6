"""Exception hierarchy shared by the container, repositories and forms.

    LinkboardError (base)
    ├── ContainerError     fatal: a service could not be built (500, no retry)
    ├── DatabaseError      query or connectivity failure (500)
    │   └── DuplicateError a unique column already holds the value
    └── ValidationError    user input rejected (400, form redisplayed)
"""

from typing import Any, Dict, List, Optional


class LinkboardError(Exception):
    """Base class. `context` is logged but never rendered to the client."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ContainerError(LinkboardError):
    """Raised when an infrastructure service cannot be provided.

    This is a configuration or programming error, not a user-facing
    condition. Controllers never catch it; it ends the request.
    """

    def __init__(self, service: str, cause: Optional[BaseException] = None):
        message = f"Unable to provide service '{service}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message=message, context={"service": service})
        self.service = service
        self.cause = cause


class DatabaseError(LinkboardError):
    def __init__(
        self,
        message: str = "A database error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DuplicateError(DatabaseError):
    """An insert hit a UNIQUE constraint on `column`."""

    def __init__(self, column: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message=f"duplicate value for {column}", context=context)
        self.column = column


class ValidationError(LinkboardError):
    """Collects field-level messages for a rejected form.

    `errors` maps a field name to the list of messages shown next to it.
    """

    def __init__(self, errors: Optional[Dict[str, List[str]]] = None, message: str = "Your form has errors"):
        self.errors = errors or {}
        super().__init__(message=message, context={"fields": sorted(self.errors)})

    def __str__(self) -> str:
        details = "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in sorted(self.errors.items()))
        return f"{self.message} ({details})" if details else self.message
