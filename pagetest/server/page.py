"""Wraps page-builder output into the document served to the browser shell."""

import html
from typing import Any

from pagetest.browser_interaction.helper_script import CYCLE_GLOBAL, HELPER_SCRIPT

# Attribute on the container holding the builder's markup
ROOT_ATTRIBUTE = "data-pagetest-root"
ROOT_SELECTOR = f"[{ROOT_ATTRIBUTE}]"

_DOCUMENT = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<script>window.{cycle_global} = {cycle};</script>
<script>{helper}</script>
</head>
<body>
<div {root_attribute}="{cycle}">{content}</div>
</body>
</html>
"""

_ERROR_DOCUMENT = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>pagetest: page builder failed</title></head>
<body><h1>Page builder failed</h1><pre>{message}</pre></body>
</html>
"""


def to_html(content: Any) -> str:
    """Accepts a plain string or any object following the ``__html__`` protocol."""
    if isinstance(content, str):
        return content
    render = getattr(content, "__html__", None)
    if callable(render):
        return render()
    raise TypeError(
        "Page builder must return an HTML string or an object with __html__(), "
        f"got {type(content).__name__}"
    )


def render_document(content: Any, cycle: int, title: str = "pagetest") -> str:
    return _DOCUMENT.format(
        title=html.escape(title),
        cycle_global=CYCLE_GLOBAL,
        cycle=int(cycle),
        helper=HELPER_SCRIPT,
        root_attribute=ROOT_ATTRIBUTE,
        content=to_html(content),
    )


def render_error_page(error: BaseException) -> str:
    message = f"{type(error).__name__}: {error}"
    return _ERROR_DOCUMENT.format(message=html.escape(message))
