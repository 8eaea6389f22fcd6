"""Row mapping for users, threads and comments.

Every finder returns ``None`` (or an empty list) when no row matches;
``DatabaseError`` is reserved for failures of the store itself.
List finders take ``limit``/``offset`` and return at most ``limit`` rows,
callers derive "more pages" from whether the page came back full.
"""

import logging
import sqlite3
from typing import Any, List, Optional, Sequence

from linkboard.exceptions import DatabaseError, DuplicateError
from linkboard.models import Comment, Thread, User, build_comment_tree, now_ts

_THREAD_SELECT = """
SELECT t.id, t.title, t.url, t.author_id, t.created_at,
       u.username AS author_name,
       (SELECT COUNT(*) FROM thread_votes v WHERE v.thread_id = t.id) AS score,
       (SELECT COUNT(*) FROM comments c WHERE c.thread_id = t.id) AS comment_count
FROM threads t
LEFT JOIN users u ON u.id = t.author_id
"""

_COMMENT_SELECT = """
SELECT c.id, c.thread_id, c.parent_id, c.author_id, c.content, c.created_at,
       u.username AS author_name, t.title AS thread_title
FROM comments c
LEFT JOIN users u ON u.id = c.author_id
LEFT JOIN threads t ON t.id = c.thread_id
"""

_USER_SELECT = "SELECT id, username, email, password, created_at FROM users"


def like_pattern(substring: str) -> str:
    """Build a LIKE pattern matching `substring` anywhere, wildcards escaped."""
    escaped = substring.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class Repository:
    def __init__(self, db: sqlite3.Connection, logger: Optional[logging.Logger] = None):
        self.db = db
        self.logger = logger or logging.getLogger(__name__)

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        self.logger.debug("query %s %r", " ".join(sql.split()), tuple(params))
        try:
            return self.db.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            self.logger.error("query failed: %s", exc)
            raise DatabaseError(context={"error": str(exc)}) from exc

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        rows = self._fetchall(sql, params)
        return rows[0] if rows else None

    def _insert(self, sql: str, params: Sequence[Any]) -> int:
        self.logger.debug("insert %s %r", " ".join(sql.split()), tuple(params))
        try:
            cur = self.db.execute(sql, params)
            self.db.commit()
        except sqlite3.IntegrityError as exc:
            self.db.rollback()
            message = str(exc)
            # "UNIQUE constraint failed: users.username"
            if message.startswith("UNIQUE constraint failed"):
                column = message.rpartition(".")[2]
                self.logger.info("insert rejected: %s", message)
                raise DuplicateError(column, context={"error": message}) from exc
            self.logger.error("insert failed: %s", exc)
            raise DatabaseError(context={"error": message}) from exc
        except sqlite3.Error as exc:
            self.db.rollback()
            self.logger.error("insert failed: %s", exc)
            raise DatabaseError(context={"error": str(exc)}) from exc
        return cur.lastrowid


class UserRepository(Repository):
    @staticmethod
    def _to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            password=row["password"],
            created_at=row["created_at"],
        )

    def _one(self, where: str, value: Any) -> Optional[User]:
        row = self._fetchone(f"{_USER_SELECT} WHERE {where} LIMIT 1", (value,))
        return self._to_user(row) if row else None

    def save(self, user: User) -> User:
        """Insert `user`; its password must already be hashed."""
        user.created_at = user.created_at or now_ts()
        user.id = self._insert(
            "INSERT INTO users (username, email, password, created_at) VALUES (?, ?, ?, ?)",
            (user.username, user.email, user.password, user.created_at),
        )
        return user

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self._one("id = ?", user_id)

    def get_one_by_username(self, username: str) -> Optional[User]:
        return self._one("username = ?", username)

    def get_one_by_email(self, email: str) -> Optional[User]:
        return self._one("email = ?", email)


class CommentRepository(Repository):
    @staticmethod
    def _to_comment(row: sqlite3.Row) -> Comment:
        return Comment(
            id=row["id"],
            thread_id=row["thread_id"],
            parent_id=row["parent_id"],
            author_id=row["author_id"],
            content=row["content"],
            created_at=row["created_at"],
            author_name=row["author_name"] or "",
            thread_title=row["thread_title"] or "",
        )

    def _list(self, sql: str, params: Sequence[Any] = ()) -> List[Comment]:
        return [self._to_comment(r) for r in self._fetchall(sql, params)]

    def create(self, comment: Comment) -> Comment:
        comment.created_at = comment.created_at or now_ts()
        comment.id = self._insert(
            "INSERT INTO comments (thread_id, parent_id, author_id, content, created_at) VALUES (?, ?, ?, ?, ?)",
            (comment.thread_id, comment.parent_id or None, comment.author_id, comment.content, comment.created_at),
        )
        return comment

    def get_by_id(self, comment_id: int) -> Optional[Comment]:
        row = self._fetchone(f"{_COMMENT_SELECT} WHERE c.id = ? LIMIT 1", (comment_id,))
        return self._to_comment(row) if row else None

    def get_by_thread_id(self, thread_id: int) -> List[Comment]:
        return self._list(f"{_COMMENT_SELECT} WHERE c.thread_id = ? ORDER BY c.created_at ASC, c.id ASC", (thread_id,))

    def get_by_author_id(self, author_id: int, limit: int = 100, offset: int = 0) -> List[Comment]:
        return self._list(
            f"{_COMMENT_SELECT} WHERE c.author_id = ? ORDER BY c.created_at DESC, c.id DESC LIMIT ? OFFSET ?",
            (author_id, limit, offset),
        )

    def get_newest(self, limit: int = 30, offset: int = 0) -> List[Comment]:
        return self._list(
            f"{_COMMENT_SELECT} ORDER BY c.created_at DESC, c.id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )


class ThreadRepository(Repository):
    @staticmethod
    def _to_thread(row: sqlite3.Row) -> Thread:
        return Thread(
            id=row["id"],
            title=row["title"],
            url=row["url"],
            author_id=row["author_id"],
            created_at=row["created_at"],
            author_name=row["author_name"] or "",
            score=row["score"],
            comment_count=row["comment_count"],
        )

    def _page(self, where: str, order: str, params: Sequence[Any], limit: int, offset: int) -> List[Thread]:
        sql = f"{_THREAD_SELECT} {where} ORDER BY {order} LIMIT ? OFFSET ?"
        return [self._to_thread(r) for r in self._fetchall(sql, (*params, limit, offset))]

    def create(self, thread: Thread) -> Thread:
        thread.created_at = thread.created_at or now_ts()
        thread.id = self._insert(
            "INSERT INTO threads (title, url, author_id, created_at) VALUES (?, ?, ?, ?)",
            (thread.title, thread.url, thread.author_id, thread.created_at),
        )
        return thread

    def get_by_id(self, thread_id: int) -> Optional[Thread]:
        row = self._fetchone(f"{_THREAD_SELECT} WHERE t.id = ? LIMIT 1", (thread_id,))
        return self._to_thread(row) if row else None

    def get_by_id_with_comments(self, thread_id: int) -> Optional[Thread]:
        thread = self.get_by_id(thread_id)
        if thread is None:
            return None
        comments = CommentRepository(self.db, self.logger).get_by_thread_id(thread_id)
        thread.comments = build_comment_tree(comments)
        return thread

    def get_sorted_by_score(self, limit: int, offset: int) -> List[Thread]:
        return self._page("", "score DESC, t.created_at DESC, t.id DESC", (), limit, offset)

    def get_newest(self, limit: int, offset: int) -> List[Thread]:
        return self._page("", "t.created_at DESC, t.id DESC", (), limit, offset)

    def get_where_url_like(self, pattern: str, limit: int, offset: int) -> List[Thread]:
        return self._page(
            "WHERE t.url LIKE ? ESCAPE '\\'", "t.created_at DESC, t.id DESC", (pattern,), limit, offset
        )

    def get_by_author_id(self, author_id: int, limit: int, offset: int) -> List[Thread]:
        return self._page("WHERE t.author_id = ?", "t.created_at DESC, t.id DESC", (author_id,), limit, offset)

    def vote(self, thread_id: int, author_id: int) -> bool:
        """Record an upvote. Returns False when the user had already voted."""
        try:
            cur = self.db.execute(
                "INSERT OR IGNORE INTO thread_votes (thread_id, author_id, created_at) VALUES (?, ?, ?)",
                (thread_id, author_id, now_ts()),
            )
            self.db.commit()
        except sqlite3.Error as exc:
            self.db.rollback()
            self.logger.error("vote failed: %s", exc)
            raise DatabaseError(context={"error": str(exc)}) from exc
        return cur.rowcount == 1
