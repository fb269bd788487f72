"""Manifest store: discover extension directories and parse their plugin.json."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from exthost.core.utils import is_valid_slug

from .errors import InvalidManifest, NotFound
from .models import KNOWN_HOOKS, MANIFEST_FILE, ExtensionManifest
from .schema import parse_settings_schema


def _to_list(val: Any) -> list:
    if isinstance(val, str):
        return [val] if val else []
    return list(val) if isinstance(val, list) else []


def _read_manifest_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidManifest(f"invalid JSON in {MANIFEST_FILE}: {e}", slug=path.parent.name) from e
    except OSError as e:
        raise InvalidManifest(f"cannot read {MANIFEST_FILE}: {e}", slug=path.parent.name) from e
    if not isinstance(data, dict):
        raise InvalidManifest(f"{MANIFEST_FILE} must contain a JSON object", slug=path.parent.name)
    return data


def manifest_problems(slug: str, data: dict) -> list[str]:
    """Every structural problem with a raw manifest dict."""
    problems: list[str] = []
    if not is_valid_slug(slug):
        problems.append(
            f"invalid extension slug '{slug}': use only letters, numbers, hyphens, and underscores"
        )

    for key in ("name", "version", "description", "author", "website", "license"):
        if key in data and not isinstance(data[key], str):
            problems.append(f"'{key}' must be a string")

    requires = data.get("requires", data.get("requirements", {}))
    if requires is not None and not isinstance(requires, dict):
        problems.append("'requires' must be an object")

    hooks = data.get("hooks", [])
    if not isinstance(hooks, (list, str)):
        problems.append("'hooks' must be a list")
    else:
        for hook in _to_list(hooks):
            if hook not in KNOWN_HOOKS:
                problems.append(
                    f"unknown hook '{hook}' (expected one of {', '.join(KNOWN_HOOKS)})"
                )

    for key in ("api_endpoints", "dependencies"):
        value = data.get(key, [])
        if not isinstance(value, (list, str)):
            problems.append(f"'{key}' must be a list")
        elif not all(isinstance(v, str) and v for v in _to_list(value)):
            problems.append(f"'{key}' entries must be non-empty strings")

    _, schema_problems = parse_settings_schema(data.get("settings_schema"))
    problems.extend(schema_problems)
    return problems


def parse_manifest(root: Path, data: dict) -> ExtensionManifest:
    """Build an ExtensionManifest from a raw dict, raising InvalidManifest on any problem."""
    slug = root.name
    problems = manifest_problems(slug, data)
    if problems:
        raise InvalidManifest("; ".join(problems), slug=slug)

    settings_schema, _ = parse_settings_schema(data.get("settings_schema"))
    author = data.get("author") or "Unknown"
    return ExtensionManifest(
        slug=slug,
        root=root,
        name=data.get("name") or slug,
        version=data.get("version") or "1.0.0",
        description=data.get("description", ""),
        author=author,
        website=data.get("website", ""),
        license=data.get("license", ""),
        requirements=dict(data.get("requires", data.get("requirements")) or {}),
        dependencies=tuple(_to_list(data.get("dependencies", []))),
        hooks=tuple(dict.fromkeys(_to_list(data.get("hooks", [])))),
        api_endpoints=tuple(dict.fromkeys(_to_list(data.get("api_endpoints", [])))),
        settings_schema=settings_schema,
        screenshots=tuple(_to_list(data.get("screenshots", []))),
        changelog=tuple(_to_list(data.get("changelog", []))),
    )


class ManifestStore:
    """Read-only view over the content root: one sub-directory per extension slug."""

    def __init__(self, content_root: Path):
        self.content_root = Path(content_root)

    def _dir(self, slug: str) -> Path:
        if not is_valid_slug(slug):
            # never let a slug walk out of the content root
            raise NotFound(f"extension not found: {slug}", slug=slug, reason="manifest")
        return self.content_root / slug

    def discover(self) -> list[str]:
        """Sorted slugs of every sub-directory holding a manifest file."""
        if not self.content_root.is_dir():
            return []
        slugs = []
        for d in sorted(self.content_root.iterdir()):
            if not d.is_dir() or d.name.startswith((".", "_")):
                continue
            if (d / MANIFEST_FILE).is_file():
                slugs.append(d.name)
        return slugs

    def exists(self, slug: str) -> bool:
        try:
            return (self._dir(slug) / MANIFEST_FILE).is_file()
        except NotFound:
            return False

    def load(self, slug: str) -> ExtensionManifest:
        root = self._dir(slug)
        path = root / MANIFEST_FILE
        if not root.is_dir() or not path.is_file():
            raise NotFound(f"extension not found: {slug}", slug=slug, reason="manifest")
        return parse_manifest(root, _read_manifest_json(path))

    def readme(self, slug: str) -> str | None:
        path = self._dir(slug) / "README.md"
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8", errors="replace")


def validate_extension_dir(path: Path) -> list[str]:
    """Collect every problem with an extension directory (empty list = valid)."""
    errors: list[str] = []
    if not path.is_dir():
        errors.append(f"not a directory: {path}")
        return errors
    manifest_path = path / MANIFEST_FILE
    if not manifest_path.is_file():
        errors.append(f"missing {MANIFEST_FILE}")
        return errors
    try:
        data = _read_manifest_json(manifest_path)
    except InvalidManifest as e:
        errors.append(e.message)
        return errors
    errors.extend(manifest_problems(path.name, data))

    hooks = [h for h in _to_list(data.get("hooks", [])) if h in KNOWN_HOOKS]
    for hook in hooks:
        if not (path / f"{hook}.py").is_file():
            errors.append(f"hook '{hook}' declared but {hook}.py is missing")
    if _to_list(data.get("api_endpoints", [])) and not (path / "api.py").is_file():
        errors.append("api_endpoints declared but api.py is missing")
    return errors
