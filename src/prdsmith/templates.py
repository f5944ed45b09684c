"""Jinja2 environment for prompts and PRD documents.

Templates live in ``prdsmith/jinja`` and are addressed without their
``.jinja`` suffix, e.g. ``render_template("prd.md", prd=draft)``.
"""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template

TEMPLATE_SUFFIX = ".jinja"
TEMPLATES_DIR = Path(__file__).resolve().parent / "jinja"
ELLIPSIS_LINE = "...\n"


def tail(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters, marking the cut with a ``...`` line."""
    text = text.strip()
    if limit <= 0 or len(text) <= limit:
        return text
    return ELLIPSIS_LINE + text[-limit:]


def isodate(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


@lru_cache(maxsize=1)
def _env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.filters["tail"] = tail
    env.filters["isodate"] = isodate
    env.globals["enumerate"] = enumerate
    return env


def template_name(name: str) -> str:
    return name if name.endswith(TEMPLATE_SUFFIX) else name + TEMPLATE_SUFFIX


def load_template(name: str) -> Template:
    return _env().get_template(template_name(name))


def render_template(name: str, **context: Any) -> str:
    return load_template(name).render(**context)
