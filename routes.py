"""Navigation surface of the application."""

import re
from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit

ROUTES = [
    "/",
    "/plan",
    "/templates",
    "/templates/:id/edit",
    "/runner",
    "/runner/:id",
    "/recap",
    "/past",
    "/analytics",
    "/past/:id",
    "/workout/:id",
    "/login",
]
PUBLIC_ROUTES = {"/login"}

_PATTERNS = [
    (route, re.compile("^" + re.sub(r":(\w+)", r"(?P<\1>\\d+)", route) + "$"))
    for route in ROUTES
]


def match(path: str) -> Optional[tuple[str, dict]]:
    """Return ``(route, params)`` for ``path`` or ``None`` when nothing matches."""
    path = path.rstrip("/") or "/"
    for route, pattern in _PATTERNS:
        found = pattern.match(path)
        if found:
            return route, {k: int(v) for k, v in found.groupdict().items()}
    return None


def with_query(path: str, query: Optional[dict] = None) -> str:
    return f"{path}?{urlencode(query)}" if query else path


def split(target: str) -> tuple[str, dict]:
    parts = urlsplit(target)
    return parts.path or "/", dict(parse_qsl(parts.query))


def guard(path: str, query: Optional[dict] = None, user: Optional[dict] = None) -> Optional[str]:
    """Return the redirect target for ``path`` or ``None`` to render it."""
    found = match(path)
    if found is None:
        return "/"
    route, _ = found
    if route in PUBLIC_ROUTES:
        return None
    if user is None:
        return "/login?" + urlencode({"next": with_query(path, query)}, quote_via=quote)
    return None


def post_login_target(query: Optional[dict]) -> str:
    """Where to go after signing in; only same-site paths are honoured."""
    target = (query or {}).get("next") or "/"
    if not target.startswith("/") or target.startswith("//"):
        return "/"
    path, _ = split(target)
    if match(path) is None or path == "/login":
        return "/"
    return target


def plan_mode(query: Optional[dict]) -> tuple[str, Optional[int]]:
    """Decode the planner's ``editTemplate``/``importWorkout``/``importTemplate`` keys."""
    query = query or {}
    for key, mode in (
        ("editTemplate", "edit_template"),
        ("importWorkout", "import_workout"),
        ("importTemplate", "import_template"),
    ):
        raw = query.get(key)
        if raw is not None and str(raw).isdigit():
            return mode, int(raw)
    return "new", None
