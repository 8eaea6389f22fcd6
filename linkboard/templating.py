import time
from typing import Any, Dict, Mapping, Optional

import bleach
from jinja2 import Environment
from markdown_it import MarkdownIt
from markupsafe import Markup

from linkboard.response import ResponseWriter

# Markdown renderer (commonmark + breaks)
md = MarkdownIt("commonmark", {"breaks": True})

_ALLOWED_TAGS = [
    "p", "br", "strong", "em", "code", "pre", "blockquote",
    "ul", "ol", "li", "a",
]
_ALLOWED_ATTRS = {"a": ["href", "title", "rel"]}


def datetimeformat(value: Any) -> str:
    try:
        ts = int(value)
    except (TypeError, ValueError):
        return ""
    return time.strftime("%Y-%m-%d %H:%M UTC", time.gmtime(ts))


def markdown_to_html(text: str) -> Markup:
    html = md.render(text or "")
    cleaned = bleach.clean(
        html,
        tags=_ALLOWED_TAGS,
        attributes=_ALLOWED_ATTRS,
        protocols=["http", "https", "mailto"],
        strip=True,
    )
    return Markup(cleaned)


def register_filters(env: Environment) -> None:
    env.filters["datetimeformat"] = datetimeformat
    env.filters["markdown"] = markdown_to_html


class TemplateEngine:
    """Renders named templates from a Jinja environment.

    `globals` are merged under every render context; keys in the
    context win.
    """

    def __init__(self, environment: Environment, globals: Optional[Mapping[str, Any]] = None):
        self.environment = environment
        self.globals: Dict[str, Any] = dict(globals or {})

    def render(self, name: str, context: Optional[Mapping[str, Any]] = None) -> str:
        data = dict(self.globals)
        data.update(context or {})
        return self.environment.get_template(name).render(**data)

    def execute_template(self, rw: ResponseWriter, name: str, context: Optional[Mapping[str, Any]] = None) -> None:
        # render fully before writing so a template error leaves the body untouched
        rw.write(self.render(name, context))
