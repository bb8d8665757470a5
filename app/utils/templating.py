from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, Undefined, select_autoescape

from app.core.settings import settings

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


def _money(value: Any, currency: str | None = None) -> str:
    if value is None or isinstance(value, Undefined):
        return ""
    if isinstance(currency, Undefined):
        currency = None
    try:
        formatted = f"{float(value):,.2f}"
    except (TypeError, ValueError):
        return str(value)
    return f"{currency} {formatted}" if currency else formatted


def _humanize(value: Any) -> str:
    return str(value or "").replace("_", " ").title()


@lru_cache(maxsize=1)
def get_environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(TEMPLATE_DIR),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["money"] = _money
    env.filters["humanize"] = _humanize
    return env


def render_template(name: str, context: dict[str, Any]) -> str:
    base_context = {
        "app_url": settings.app_url,
        "support_email": settings.support_email,
        "support_phone": settings.support_phone,
    }
    return get_environment().get_template(name).render({**base_context, **context})
