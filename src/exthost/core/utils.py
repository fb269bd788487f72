"""Slug helpers, version comparison, timestamps, path display."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

SLUG_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and SLUG_RE.match(slug) is not None


def slug_identifier(slug: str) -> str:
    """'mail-notify' -> 'mail_notify', usable as a Python identifier prefix."""
    return slug.replace("-", "_")


def utcnow() -> str:
    """Current UTC time as ISO-8601 with seconds precision."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def version_tuple(version: str) -> tuple[int, ...]:
    """'v2.10.1-rc1' -> (2, 10, 1). Non-numeric suffixes are dropped."""
    parts: list[int] = []
    for part in str(version).strip().lstrip("vV").split("."):
        digits = ""
        for ch in part:
            if not ch.isdigit():
                break
            digits += ch
        if not digits:
            break
        parts.append(int(digits))
    return tuple(parts)


def parse_constraint(requirement: str) -> tuple[str, tuple[int, ...]] | None:
    """'>=1.2' -> ('>=', (1, 2)). None for anything else, e.g. '^3.0', '~=2', 'latest'."""
    target = str(requirement).strip()
    op = ">="
    for candidate in (">=", "<=", "==", ">", "<"):
        if target.startswith(candidate):
            op = candidate
            target = target[len(candidate) :].strip()
            break
    want = version_tuple(target)
    if not want:
        return None
    return op, want


def version_satisfies(current: str, requirement: str) -> bool:
    """Check *current* against '>=1.2', '<2', '==1.0' or a bare minimum '1.2'.

    An unparseable requirement is never satisfied.
    """
    parsed = parse_constraint(requirement)
    if parsed is None:
        return False
    op, want = parsed
    have = version_tuple(current)
    # pad so that 1.2 == 1.2.0
    width = max(len(have), len(want))
    have = have + (0,) * (width - len(have))
    want = want + (0,) * (width - len(want))
    if op == ">=":
        return have >= want
    if op == "<=":
        return have <= want
    if op == ">":
        return have > want
    if op == "<":
        return have < want
    return have == want


def short_path(p: Path) -> str:
    """Return path relative to home directory, using ~ prefix."""
    try:
        rel = p.resolve().relative_to(Path.home().resolve())
        return f"~/{rel}" if str(rel) != "." else "~"
    except ValueError:
        return str(p)
