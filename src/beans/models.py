"""Data models for the file-backed bean store."""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from beans.errors import ValidationError

ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
DEFAULT_ID_LENGTH = 4
FILE_EXTENSION = ".md"
KNOWN_LINK_TYPES = ("blocks", "duplicates", "parent", "related")

_SLUG_MAX = 50
_TAG_RE = re.compile(r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$")


def new_bean_id(prefix: str = "", length: int = DEFAULT_ID_LENGTH) -> str:
    """Generate a bean ID: <prefix><length random chars from 0-9a-z>."""
    return prefix + "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def now_utc() -> datetime:
    """Current time in UTC, truncated to whole seconds (the on-disk precision)."""
    return datetime.now(UTC).replace(microsecond=0)


def slugify(title: str) -> str:
    """Turn a title into a filename-friendly slug (max 50 chars)."""
    s = title.lower().replace(" ", "-").replace("_", "-")
    s = "".join(ch for ch in s if ch.isalnum() or ch == "-")
    s = re.sub(r"-+", "-", s).strip("-")
    if len(s) > _SLUG_MAX:
        s = s[:_SLUG_MAX].rstrip("-")
    return s


def build_filename(bean_id: str, slug: str = "") -> str:
    if not slug:
        return bean_id + FILE_EXTENSION
    return f"{bean_id}-{slug}{FILE_EXTENSION}"


def parse_filename(name: str, prefix: str = "") -> tuple[str, str]:
    """Split "f7g-user-registration.md" into ("f7g", "user-registration").

    The ID ends at the first dash after prefix, so prefixes may contain dashes.
    """
    if name.endswith(FILE_EXTENSION):
        name = name[: -len(FILE_EXTENSION)]
    if not prefix or not name.startswith(prefix):
        prefix = ""
    rest, _, slug = name[len(prefix):].partition("-")
    return prefix + rest, slug


def normalize_tag(tag: str) -> str:
    return tag.strip().lower()


def validate_tag(tag: str) -> None:
    """Raise ValidationError unless tag is lowercase words joined by single dashes."""
    if not _TAG_RE.match(tag):
        msg = (
            f"invalid tag {tag!r}: must start with a letter and contain only "
            "lowercase letters, digits and single dashes"
        )
        raise ValidationError(msg)


@dataclass(frozen=True)
class Link:
    """A directed, typed edge to another bean."""

    type: str
    target: str

    @classmethod
    def parse(cls, value: str) -> Link:
        """Parse "type:id"."""
        link_type, sep, target = value.partition(":")
        if not sep or not link_type or not target:
            msg = f"invalid link format: {value!r} (expected type:id)"
            raise ValidationError(msg)
        return cls(link_type, target)

    def to_dict(self) -> dict[str, str]:
        return {self.type: self.target}

    def __str__(self) -> str:
        return f"{self.type}:{self.target}"


@dataclass
class Bean:
    """A single issue record, persisted as one Markdown file."""

    id: str = ""
    slug: str = ""
    title: str = ""
    status: str = ""
    type: str = ""
    priority: str = ""
    body: str = ""
    tags: list[str] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    path: str = ""                      # relative to the repository root

    def copy(self) -> Bean:
        """Detached copy: list fields are not shared with the original."""
        return replace(self, tags=list(self.tags), links=list(self.links))

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def has_tag(self, tag: str) -> bool:
        wanted = normalize_tag(tag)
        return any(normalize_tag(t) == wanted for t in self.tags)

    def add_tag(self, tag: str) -> None:
        tag = normalize_tag(tag)
        validate_tag(tag)
        if not self.has_tag(tag):
            self.tags.append(tag)

    def remove_tag(self, tag: str) -> None:
        wanted = normalize_tag(tag)
        self.tags = [t for t in self.tags if normalize_tag(t) != wanted]

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def has_link(self, link_type: str, target: str | None = None) -> bool:
        """True if the bean holds a link of link_type (to target, when given)."""
        return any(
            link.type == link_type and (target is None or link.target == target)
            for link in self.links
        )

    def link_targets(self, link_type: str) -> list[str]:
        return [link.target for link in self.links if link.type == link_type]

    def add_link(self, link_type: str, target: str) -> None:
        if not self.has_link(link_type, target):
            self.links.append(Link(link_type, target))

    def remove_link(self, link_type: str, target: str) -> None:
        self.links = [
            link for link in self.links
            if not (link.type == link_type and link.target == target)
        ]

    def remove_links_to(self, target: str) -> int:
        """Drop every link pointing at target. Returns the number removed."""
        kept = [link for link in self.links if link.target != target]
        removed = len(self.links) - len(kept)
        self.links = kept
        return removed

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self, *, include_body: bool = True) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "slug": self.slug,
            "path": self.path,
            "title": self.title,
            "status": self.status,
            "type": self.type,
            "priority": self.priority,
            "tags": list(self.tags),
            "links": [link.to_dict() for link in self.links],
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }
        if include_body:
            d["body"] = self.body
        return d


def format_timestamp(value: datetime | None) -> str | None:
    """ISO-8601 in UTC with a trailing Z, or None."""
    if value is None:
        return None
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: Any) -> datetime | None:
    """Accept an ISO string or a datetime (PyYAML decodes bare timestamps)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value)
    else:
        msg = f"not a timestamp: {value!r}"
        raise ValueError(msg)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
