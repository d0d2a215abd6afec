"""BeansConfig: project-local config for the bean store.

Default layout (all relative to the project root):

    .beans.toml           # project config (git-tracked)
    .beans/
        ab12-fix-login.md # one Markdown file per bean (git-tracked)

.beans.toml example:

    [beans]
    path = ".beans"         # repository root, relative to .beans.toml
    prefix = "app-"         # ID prefix
    id_length = 4
    default_status = "open"
    default_type = "task"
    default_priority = "normal"

    [[statuses]]
    name = "open"
    color = "green"

    [[statuses]]
    name = "done"
    color = "gray"
    archive = true          # sorted last by default, removed by `beans archive`

    [[types]]
    name = "bug"
    color = "red"
    description = "Something that is broken"

    [[priorities]]
    name = "high"
    color = "yellow"

Statuses, types and priorities are ordered: list order is the sort order.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from beans.errors import ConfigError
from beans.models import DEFAULT_ID_LENGTH

CONFIG_FILENAME = ".beans.toml"
_DEFAULT_BEANS_DIR = ".beans"


@dataclass
class StatusConfig:
    """A [[statuses]] entry."""
    name: str
    color: str = "white"
    archive: bool = False
    description: str = ""


@dataclass
class TypeConfig:
    """A [[types]] entry."""
    name: str
    color: str = "white"
    description: str = ""


@dataclass
class PriorityConfig:
    """A [[priorities]] entry."""
    name: str
    color: str = "white"
    description: str = ""


def _default_statuses() -> list[StatusConfig]:
    return [
        StatusConfig("open", "green", description="Ready to be worked on"),
        StatusConfig("in-progress", "yellow", description="Currently being worked on"),
        StatusConfig("done", "gray", archive=True, description="Finished"),
    ]


def _default_types() -> list[TypeConfig]:
    return [
        TypeConfig("milestone", "cyan", "A target release or checkpoint"),
        TypeConfig("epic", "purple", "A thematic container for related work"),
        TypeConfig("bug", "red", "Something that is broken and needs fixing"),
        TypeConfig("feature", "green", "A user-facing capability or enhancement"),
        TypeConfig("task", "blue", "A concrete piece of work to complete"),
    ]


def _default_priorities() -> list[PriorityConfig]:
    return [
        PriorityConfig("critical", "red", "Urgent, blocking work"),
        PriorityConfig("high", "yellow", "Important, should be done soon"),
        PriorityConfig("normal", "white", "Standard priority"),
        PriorityConfig("low", "gray", "Less important, can wait"),
        PriorityConfig("deferred", "gray", "Explicitly pushed back"),
    ]


@dataclass
class BeansConfig:
    """Resolved configuration for a beans project."""

    root: Path                      # directory that contains .beans.toml
    path: str = _DEFAULT_BEANS_DIR
    prefix: str = ""
    id_length: int = DEFAULT_ID_LENGTH
    default_status: str = "open"
    default_type: str = "task"
    default_priority: str = "normal"
    statuses: list[StatusConfig] = field(default_factory=_default_statuses)
    types: list[TypeConfig] = field(default_factory=_default_types)
    priorities: list[PriorityConfig] = field(default_factory=_default_priorities)

    @property
    def beans_dir(self) -> Path:
        return self.root / self.path

    # ------------------------------------------------------------------
    # Statuses
    # ------------------------------------------------------------------

    def status_names(self) -> list[str]:
        return [s.name for s in self.statuses]

    def get_status(self, name: str) -> StatusConfig | None:
        return next((s for s in self.statuses if s.name == name), None)

    def is_valid_status(self, name: str) -> bool:
        return self.get_status(name) is not None

    def is_archive_status(self, name: str) -> bool:
        status = self.get_status(name)
        return status is not None and status.archive

    def status_list(self) -> str:
        return ", ".join(self.status_names())

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def type_names(self) -> list[str]:
        return [t.name for t in self.types]

    def get_type(self, name: str) -> TypeConfig | None:
        return next((t for t in self.types if t.name == name), None)

    def is_valid_type(self, name: str) -> bool:
        return self.get_type(name) is not None

    def type_list(self) -> str:
        return ", ".join(self.type_names())

    # ------------------------------------------------------------------
    # Priorities
    # ------------------------------------------------------------------

    def priority_names(self) -> list[str]:
        return [p.name for p in self.priorities]

    def get_priority(self, name: str) -> PriorityConfig | None:
        return next((p for p in self.priorities if p.name == name), None)

    def is_valid_priority(self, name: str) -> bool:
        return self.get_priority(name) is not None

    def priority_list(self) -> str:
        return ", ".join(self.priority_names())


def default_config(root: Path | str | None = None, prefix: str = "") -> BeansConfig:
    return BeansConfig(root=Path(root) if root else Path.cwd(), prefix=prefix)


def load_config(root: Path | str | None = None) -> BeansConfig:
    """Load .beans.toml from root (or search upward from cwd if root is None).

    A missing file yields the defaults rooted at the start directory.
    """
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            msg = f"{config_path}: {exc}"
            raise ConfigError(msg) from exc

    beans_section = raw.get("beans", {})
    cfg = BeansConfig(
        root=root_path,
        path=str(beans_section.get("path", _DEFAULT_BEANS_DIR)),
        prefix=str(beans_section.get("prefix", "")),
        id_length=int(beans_section.get("id_length", DEFAULT_ID_LENGTH)) or DEFAULT_ID_LENGTH,
        default_status=str(beans_section.get("default_status", "open")),
        default_type=str(beans_section.get("default_type", "task")),
        default_priority=str(beans_section.get("default_priority", "normal")),
    )

    if "statuses" in raw:
        cfg.statuses = [
            StatusConfig(
                name=_required_name(s, "statuses"),
                color=s.get("color", "white"),
                archive=bool(s.get("archive", False)),
                description=s.get("description", ""),
            )
            for s in raw["statuses"]
        ]
    if "types" in raw:
        cfg.types = [
            TypeConfig(
                name=_required_name(t, "types"),
                color=t.get("color", "white"),
                description=t.get("description", ""),
            )
            for t in raw["types"]
        ]
    if "priorities" in raw:
        cfg.priorities = [
            PriorityConfig(
                name=_required_name(p, "priorities"),
                color=p.get("color", "white"),
                description=p.get("description", ""),
            )
            for p in raw["priorities"]
        ]

    if not cfg.statuses:
        msg = f"{config_path}: at least one status must be configured"
        raise ConfigError(msg)
    if not cfg.is_valid_status(cfg.default_status):
        msg = f"{config_path}: default_status {cfg.default_status!r} is not one of: {cfg.status_list()}"
        raise ConfigError(msg)
    if cfg.default_type and not cfg.is_valid_type(cfg.default_type):
        msg = f"{config_path}: default_type {cfg.default_type!r} is not one of: {cfg.type_list()}"
        raise ConfigError(msg)
    if cfg.default_priority and cfg.priorities and not cfg.is_valid_priority(cfg.default_priority):
        msg = f"{config_path}: default_priority {cfg.default_priority!r} is not one of: {cfg.priority_list()}"
        raise ConfigError(msg)
    return cfg


def _required_name(entry: Any, section: str) -> str:
    if not isinstance(entry, dict) or not entry.get("name"):
        msg = f"every [[{section}]] entry needs a name"
        raise ConfigError(msg)
    return str(entry["name"])


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for .beans.toml."""
    for directory in (start, *start.parents):
        if (directory / CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, prefix: str | None = None) -> Path:
    """Write a default .beans.toml at root. Raises if already exists."""
    config_path = root / CONFIG_FILENAME
    if config_path.exists():
        msg = f"{CONFIG_FILENAME} already exists at {config_path}"
        raise FileExistsError(msg)

    content = f"""\
[beans]
path = "{_DEFAULT_BEANS_DIR}"
prefix = "{prefix or ''}"
id_length = {DEFAULT_ID_LENGTH}
default_status = "open"
default_type = "task"
default_priority = "normal"

# Statuses in display/sort order; archive = true marks finished work.
[[statuses]]
name = "open"
color = "green"

[[statuses]]
name = "in-progress"
color = "yellow"

[[statuses]]
name = "done"
color = "gray"
archive = true

# [[types]]
# name = "bug"
# color = "red"
# description = "Something that is broken and needs fixing"

# [[priorities]]   (default: critical, high, normal, low, deferred)
# name = "high"
# color = "yellow"
"""
    config_path.write_text(content)
    return config_path
