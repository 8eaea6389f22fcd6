"""Form decoding and validation.

Every form is decoded explicitly from the posted fields, named
``<form>_<field>`` (``login_username``, ``submission_csrf``...), then
validated as a whole. Validation raises ``ValidationError`` carrying all
field messages and stores them on the form for redisplay; nothing is
persisted until a form validates.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol

from email_validator import EmailNotValidError, validate_email

from linkboard.exceptions import ValidationError
from linkboard.models import Comment, Thread, User

URL_RE = re.compile(
    r"^(https?://)?"
    r"([a-z0-9]([a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}"
    r"(:\d{1,5})?"
    r"([/?#]\S*)?$",
    re.IGNORECASE,
)
USERNAME_RE = re.compile(r"^[A-Za-z0-9_-]{3,50}$")

MIN_PASSWORD_LENGTH = 6
MAX_TITLE_LENGTH = 255
MAX_COMMENT_LENGTH = 10000
# largest value sqlite stores in an INTEGER column
MAX_ID = 2**63 - 1


def is_url(value: str) -> bool:
    return bool(URL_RE.match(value or ""))


def normalize_email(value: str) -> Optional[str]:
    """The normalized address, or None when `value` is not a valid email."""
    try:
        return validate_email(value or "", check_deliverability=False).normalized
    except EmailNotValidError:
        return None


def parse_id(raw: Optional[str]) -> Optional[int]:
    """A non negative integer that fits a sqlite INTEGER, else None."""
    raw = (raw or "").strip()
    if not raw.isascii() or not raw.isdigit() or len(raw) > len(str(MAX_ID)):
        return None
    value = int(raw)
    return value if value <= MAX_ID else None


def safe_goto(value: str, default: str) -> str:
    """Only same-site absolute paths are accepted as redirect targets."""
    if value and value.startswith("/") and not value.startswith("//") and "\\" not in value:
        return value
    return default


class CSRFChecker(Protocol):
    def generate(self, action: str) -> str: ...

    def valid(self, token: str, action: str) -> bool: ...


class UserFinder(Protocol):
    def get_one_by_username(self, username: str) -> Optional[User]: ...

    def get_one_by_email(self, email: str) -> Optional[User]: ...


def _text(data: Mapping[str, str], key: str) -> str:
    return (data.get(key) or "").strip()


def _optional_int(data: Mapping[str, str], key: str, errors: Dict[str, List[str]], fieldname: str) -> Optional[int]:
    raw = _text(data, key)
    if not raw:
        return None
    value = parse_id(raw)
    if value is None:
        errors.setdefault(fieldname, []).append("must be a number")
    return value


@dataclass
class Form:
    name = ""
    csrf: str = ""
    errors: Dict[str, List[str]] = field(default_factory=dict)

    def field_name(self, fieldname: str) -> str:
        return f"{self.name}_{fieldname}"

    def add_error(self, fieldname: str, message: str) -> None:
        self.errors.setdefault(fieldname, []).append(message)

    def check_csrf(self, csrf: CSRFChecker) -> None:
        if not csrf.valid(self.csrf, self.name):
            self.add_error("csrf", "invalid or expired token, please resubmit the form")

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ValidationError(dict(self.errors))


@dataclass
class LoginForm(Form):
    name = "login"
    username: str = ""
    password: str = ""

    @classmethod
    def decode(cls, data: Mapping[str, str]) -> "LoginForm":
        return cls(
            csrf=_text(data, "login_csrf"),
            username=_text(data, "login_username"),
            password=data.get("login_password") or "",
        )

    def model(self) -> User:
        return User(username=self.username, password=self.password)


@dataclass
class RegistrationForm(Form):
    name = "registration"
    username: str = ""
    email: str = ""
    password: str = ""
    password_confirmation: str = ""

    @classmethod
    def decode(cls, data: Mapping[str, str]) -> "RegistrationForm":
        return cls(
            csrf=_text(data, "registration_csrf"),
            username=_text(data, "registration_username"),
            email=_text(data, "registration_email"),
            password=data.get("registration_password") or "",
            password_confirmation=data.get("registration_password_confirmation") or "",
        )

    def model(self) -> User:
        """A new user with a hashed password. Call only on a valid form."""
        user = User(username=self.username, email=self.email)
        user.create_secure_password(self.password)
        return user


@dataclass
class SubmissionForm(Form):
    name = "submission"
    title: str = ""
    url: str = ""

    @classmethod
    def decode(cls, data: Mapping[str, str]) -> "SubmissionForm":
        return cls(
            csrf=_text(data, "submission_csrf"),
            title=_text(data, "submission_title"),
            url=_text(data, "submission_url"),
        )

    def model(self, author_id: int) -> Thread:
        return Thread(title=self.title, url=self.url, author_id=author_id)


@dataclass
class CommentForm(Form):
    name = "comment"
    content: str = ""
    thread_id: Optional[int] = None
    parent_id: Optional[int] = None
    goto: str = ""

    @classmethod
    def decode(cls, data: Mapping[str, str]) -> "CommentForm":
        errors: Dict[str, List[str]] = {}
        thread_id = _optional_int(data, "comment_thread_id", errors, "thread_id")
        parent_id = _optional_int(data, "comment_parent_id", errors, "parent_id")
        default_goto = f"/item?id={thread_id}" if thread_id else "/"
        return cls(
            csrf=_text(data, "comment_csrf"),
            content=_text(data, "comment_content"),
            thread_id=thread_id,
            parent_id=parent_id or None,
            goto=safe_goto(_text(data, "comment_goto"), default_goto),
            errors=errors,
        )

    def model(self, author_id: int) -> Comment:
        return Comment(
            thread_id=self.thread_id,
            parent_id=self.parent_id,
            author_id=author_id,
            content=self.content,
        )


@dataclass
class VoteForm(Form):
    name = "vote"
    thread_id: Optional[int] = None
    goto: str = "/"

    @classmethod
    def decode(cls, data: Mapping[str, str]) -> "VoteForm":
        errors: Dict[str, List[str]] = {}
        thread_id = _optional_int(data, "vote_thread_id", errors, "thread_id")
        return cls(
            csrf=_text(data, "vote_csrf"),
            thread_id=thread_id,
            goto=safe_goto(_text(data, "vote_goto"), "/"),
            errors=errors,
        )


def validate_login_form(form: LoginForm, csrf: CSRFChecker) -> None:
    form.check_csrf(csrf)
    if not form.username:
        form.add_error("username", "is required")
    if not form.password:
        form.add_error("password", "is required")
    form.raise_for_errors()


def validate_registration_form(form: RegistrationForm, csrf: CSRFChecker, users: UserFinder) -> None:
    form.check_csrf(csrf)
    if not USERNAME_RE.match(form.username):
        form.add_error("username", "must be 3 to 50 letters, digits, '_' or '-'")
    email = normalize_email(form.email)
    if email is None:
        form.add_error("email", "is not a valid email address")
    else:
        form.email = email
    if len(form.password) < MIN_PASSWORD_LENGTH:
        form.add_error("password", f"must be at least {MIN_PASSWORD_LENGTH} characters long")
    if form.password != form.password_confirmation:
        form.add_error("password_confirmation", "does not match the password")
    # uniqueness is only worth a query once the shape is right
    if "username" not in form.errors and users.get_one_by_username(form.username) is not None:
        form.add_error("username", "is already taken")
    if "email" not in form.errors and users.get_one_by_email(form.email) is not None:
        form.add_error("email", "is already registered")
    form.raise_for_errors()


def validate_submission_form(form: SubmissionForm, csrf: CSRFChecker) -> None:
    form.check_csrf(csrf)
    if not form.title:
        form.add_error("title", "is required")
    elif len(form.title) > MAX_TITLE_LENGTH:
        form.add_error("title", f"must be at most {MAX_TITLE_LENGTH} characters long")
    if not is_url(form.url):
        form.add_error("url", "is not a valid URL")
    form.raise_for_errors()


def validate_comment_form(form: CommentForm, csrf: CSRFChecker, threads, comments) -> None:
    """`threads` and `comments` are the repositories used to check references."""
    form.check_csrf(csrf)
    if not form.content:
        form.add_error("content", "is required")
    elif len(form.content) > MAX_COMMENT_LENGTH:
        form.add_error("content", f"must be at most {MAX_COMMENT_LENGTH} characters long")
    if form.thread_id is None:
        if "thread_id" not in form.errors:
            form.add_error("thread_id", "is required")
    elif threads.get_by_id(form.thread_id) is None:
        form.add_error("thread_id", "story does not exist")
    if form.parent_id is not None and "thread_id" not in form.errors:
        parent = comments.get_by_id(form.parent_id)
        if parent is None:
            form.add_error("parent_id", "comment does not exist")
        elif parent.thread_id != form.thread_id:
            form.add_error("parent_id", "comment belongs to another story")
    form.raise_for_errors()


def validate_vote_form(form: VoteForm, csrf: CSRFChecker, threads) -> None:
    form.check_csrf(csrf)
    if form.thread_id is None:
        if "thread_id" not in form.errors:
            form.add_error("thread_id", "is required")
    elif threads.get_by_id(form.thread_id) is None:
        form.add_error("thread_id", "story does not exist")
    form.raise_for_errors()
