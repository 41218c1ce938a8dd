from __future__ import annotations

import re

from fastapi import Request

from site_coverage_app.config import AppConfig
from site_coverage_app.core.env import SITECOV_TEST_USER, get_env

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _first_header(request: Request, names: list[str]) -> str:
    for name in names:
        value = str(request.headers.get(name, "") or "").strip()
        if value:
            return value
    return ""


def _email_from_value(value: str) -> str:
    cleaned = str(value or "").strip().lower()
    return cleaned if _EMAIL_RE.match(cleaned) else ""


def resolve_actor(request: Request, config: AppConfig) -> str:
    """Acting principal from forwarded identity headers; the dev test user when none are sent."""
    preferred_username = _first_header(request, ["x-forwarded-preferred-username", "x-forwarded-upn"])
    email_header = _first_header(request, ["x-forwarded-email", "x-user-email"])
    principal = preferred_username or _email_from_value(email_header) or email_header
    if principal:
        return principal
    if config.is_dev_env:
        return get_env(SITECOV_TEST_USER, "")
    return ""


def require_actor(request: Request, config: AppConfig) -> str:
    actor = resolve_actor(request, config)
    if not actor:
        raise PermissionError("No authenticated user was forwarded with this request.")
    return actor
