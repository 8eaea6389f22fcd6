import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urlparse

from werkzeug.security import check_password_hash, generate_password_hash


def now_ts() -> int:
    return int(time.time())


@dataclass
class User:
    id: Optional[int] = None
    username: str = ""
    email: str = ""
    # salted hash once create_secure_password has run
    password: str = ""
    created_at: Optional[int] = None

    def create_secure_password(self, plaintext: str) -> None:
        self.password = generate_password_hash(plaintext)

    def authenticate(self, plaintext: str) -> bool:
        """Return True iff `plaintext` matches the stored salted hash."""
        if not plaintext or not self.password:
            return False
        try:
            return check_password_hash(self.password, plaintext)
        except ValueError:
            # stored value is not a hash werkzeug understands
            return False


@dataclass
class Comment:
    id: Optional[int] = None
    thread_id: Optional[int] = None
    parent_id: Optional[int] = None
    author_id: Optional[int] = None
    content: str = ""
    created_at: Optional[int] = None
    author_name: str = ""
    thread_title: str = ""
    children: List["Comment"] = field(default_factory=list)


@dataclass
class Thread:
    id: Optional[int] = None
    title: str = ""
    url: str = ""
    author_id: Optional[int] = None
    created_at: Optional[int] = None
    author_name: str = ""
    score: int = 0
    comment_count: int = 0
    comments: List[Comment] = field(default_factory=list)

    @property
    def domain(self) -> str:
        url = self.url if "://" in self.url else "http://" + self.url
        return (urlparse(url).hostname or "").lower()


def build_comment_tree(comments: List[Comment]) -> List[Comment]:
    """Nest `comments` under their parents and return the top-level ones.

    Input order is kept among siblings. A comment whose parent is missing
    from the list is treated as top-level.
    """
    by_id: Dict[int, Comment] = {c.id: c for c in comments if c.id is not None}
    roots: List[Comment] = []
    for c in comments:
        c.children = []
    for c in comments:
        parent = by_id.get(c.parent_id) if c.parent_id else None
        if parent is not None and parent is not c:
            parent.children.append(c)
        else:
            roots.append(c)
    return roots
