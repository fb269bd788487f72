"""Configuration: env, paths, host capability table."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from exthost import __version__

# Project config dirs looked up under cwd.
PROJECT_DIR_NAMES = (".exthost",)


@dataclass
class Config:
    content_root: Path = field(default_factory=lambda: Path("plugins"))
    database_path: Path | None = None  # None = <global_dir>/exthost.sqlite
    cwd: Path = field(default_factory=Path.cwd)
    global_dir: Path = field(default_factory=lambda: Path.home() / ".exthost")
    project_dir: Path | None = None  # explicit override; None = auto-detect from cwd
    host_version: str = __version__
    capabilities: dict[str, Any] = field(default_factory=dict)
    actor: str = ""
    grants: list[str] = field(default_factory=lambda: ["admin.plugins"])
    store_timeout: float = 30.0
    verbose: bool = False

    @property
    def project_dirs(self) -> list[Path]:
        if self.project_dir is not None:
            return [self.project_dir] if self.project_dir.is_dir() else []
        return [self.cwd / name for name in PROJECT_DIR_NAMES if (self.cwd / name).is_dir()]

    @property
    def plugin_dir(self) -> Path:
        """Content root resolved against cwd."""
        root = Path(self.content_root).expanduser()
        return root if root.is_absolute() else self.cwd / root

    @property
    def db_path(self) -> Path:
        if self.database_path is None:
            return self.global_dir / "exthost.sqlite"
        path = Path(self.database_path).expanduser()
        return path if path.is_absolute() else self.cwd / path

    def capability_table(self) -> dict[str, Any]:
        """Host capabilities consulted for requirement checks.

        ``host`` and ``python`` are always present; configured entries override
        anything but those two.
        """
        table = dict(self.capabilities)
        table["host"] = self.host_version
        table["python"] = platform.python_version()
        return table


def _apply_settings(config: Config, path: Path) -> None:
    """Apply a single settings.json file to config."""
    if not path.exists():
        return
    data = json.loads(path.read_text())
    if "content_root" in data:
        config.content_root = Path(data["content_root"])
    if "database" in data:
        config.database_path = Path(data["database"])
    if "actor" in data:
        config.actor = str(data["actor"])
    if "grants" in data and isinstance(data["grants"], list):
        config.grants = [str(g) for g in data["grants"]]
    if "store_timeout" in data:
        config.store_timeout = float(data["store_timeout"])
    if "capabilities" in data and isinstance(data["capabilities"], dict):
        config.capabilities.update(data["capabilities"])


def load_config(
    content_root: str | None = None,
    database: str | None = None,
    verbose: bool = False,
) -> Config:
    """Load config with priority: CLI args > env > .env > settings.json > defaults."""
    load_dotenv()

    config = Config()
    config.verbose = verbose

    _apply_settings(config, config.global_dir / "settings.json")

    for pdir in config.project_dirs:
        _apply_settings(config, pdir / "settings.json")

    for pdir in config.project_dirs:
        _apply_settings(config, pdir / "settings.local.json")

    if env_root := os.getenv("PLUGIN_PATH"):
        config.content_root = Path(env_root)
    if env_db := os.getenv("EXTHOST_DB"):
        config.database_path = Path(env_db)
    if env_actor := os.getenv("EXTHOST_ACTOR"):
        config.actor = env_actor
    if env_grants := os.getenv("EXTHOST_GRANTS"):
        config.grants = [g.strip() for g in env_grants.split(",") if g.strip()]
    if env_features := os.getenv("EXTHOST_FEATURES"):
        for name in env_features.split(","):
            if name.strip():
                config.capabilities[f"feature:{name.strip()}"] = True

    if content_root:
        config.content_root = Path(content_root)
    if database:
        config.database_path = Path(database)

    return config
