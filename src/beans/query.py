"""Filter and sort pipeline over a bean snapshot.

    beans = query_beans(store.find_all(), BeanFilter(status=["open"], sort="created"), cfg)

Stages run in a fixed order, each narrowing the previous stage's output:

    status / exclude_status
    type / exclude_type
    priority / exclude_priority   (no priority counts as the default priority)
    has_link       outgoing link of a type (or exact type:target edge)
    linked_as      incoming link of a type (or from a named source bean)
    no_link        inverse of has_link
    no_linked_as   inverse of linked_as
    tags / exclude_tags
    sort

Every stage passes its input through untouched when its criteria are empty.
The link index used by the incoming-link stages is built from the full input,
before any filtering, so links from beans filtered out earlier still count.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from beans.errors import ValidationError
from beans.links import LinkIndex, build_index

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from beans.config import BeansConfig
    from beans.models import Bean

SORT_KEYS = ("created", "updated", "status", "priority", "id")


@dataclass(frozen=True)
class LinkFilter:
    """A bare link type ("blocks") or a type plus bean ID ("blocks:ab12")."""

    type: str
    target: str | None = None

    @classmethod
    def parse(cls, value: str) -> LinkFilter:
        link_type, sep, target = value.partition(":")
        if not link_type or (sep and not target):
            msg = f"invalid link filter: {value!r} (expected type or type:id)"
            raise ValidationError(msg)
        return cls(link_type, target or None)

    def __str__(self) -> str:
        return self.type if self.target is None else f"{self.type}:{self.target}"


@dataclass
class BeanFilter:
    status: list[str] = field(default_factory=list)
    exclude_status: list[str] = field(default_factory=list)
    type: list[str] = field(default_factory=list)
    exclude_type: list[str] = field(default_factory=list)
    priority: list[str] = field(default_factory=list)
    exclude_priority: list[str] = field(default_factory=list)
    has_link: list[LinkFilter] = field(default_factory=list)
    linked_as: list[LinkFilter] = field(default_factory=list)
    no_link: list[LinkFilter] = field(default_factory=list)
    no_linked_as: list[LinkFilter] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    exclude_tags: list[str] = field(default_factory=list)
    sort: str | None = None


def query_beans(beans: Iterable[Bean], criteria: BeanFilter | None, cfg: BeansConfig) -> list[Bean]:
    """Filter and sort beans. The input sequence is not modified."""
    result = list(beans)
    if criteria is None:
        return sort_beans(result, None, cfg)

    index = build_index(result)

    result = filter_by_field(result, criteria.status, lambda b: b.status)
    result = exclude_by_field(result, criteria.exclude_status, lambda b: b.status)
    result = filter_by_field(result, criteria.type, lambda b: b.type)
    result = exclude_by_field(result, criteria.exclude_type, lambda b: b.type)
    result = filter_by_field(result, criteria.priority, lambda b: b.priority or cfg.default_priority)
    result = exclude_by_field(result, criteria.exclude_priority, lambda b: b.priority or cfg.default_priority)
    result = filter_by_outgoing_links(result, criteria.has_link)
    result = filter_by_incoming_links(result, criteria.linked_as, index)
    result = exclude_by_outgoing_links(result, criteria.no_link)
    result = exclude_by_incoming_links(result, criteria.no_linked_as, index)
    result = filter_by_tags(result, criteria.tags)
    result = exclude_by_tags(result, criteria.exclude_tags)
    return sort_beans(result, criteria.sort, cfg)


# ---------------------------------------------------------------------------
# Field stages
# ---------------------------------------------------------------------------


def filter_by_field(beans: list[Bean], values: Iterable[str], getter: Callable[[Bean], str]) -> list[Bean]:
    """Keep beans whose field is any of values."""
    wanted = set(values)
    if not wanted:
        return beans
    return [b for b in beans if getter(b) in wanted]


def exclude_by_field(beans: list[Bean], values: Iterable[str], getter: Callable[[Bean], str]) -> list[Bean]:
    """Drop beans whose field is any of values."""
    unwanted = set(values)
    if not unwanted:
        return beans
    return [b for b in beans if getter(b) not in unwanted]


def filter_by_tags(beans: list[Bean], tags: Iterable[str]) -> list[Bean]:
    wanted = set(tags)
    if not wanted:
        return beans
    return [b for b in beans if wanted.intersection(b.tags)]


def exclude_by_tags(beans: list[Bean], tags: Iterable[str]) -> list[Bean]:
    unwanted = set(tags)
    if not unwanted:
        return beans
    return [b for b in beans if not unwanted.intersection(b.tags)]


# ---------------------------------------------------------------------------
# Link stages
# ---------------------------------------------------------------------------


def _has_outgoing(bean: Bean, filters: Sequence[LinkFilter]) -> bool:
    return any(bean.has_link(f.type, f.target) for f in filters)


def _has_incoming(bean: Bean, filters: Sequence[LinkFilter], index: LinkIndex) -> bool:
    for f in filters:
        if f.target is None:
            if index.is_incoming_target(f.type, bean.id):
                return True
            continue
        source = index.by_id(f.target)
        if source is not None and source.has_link(f.type, bean.id):
            return True
    return False


def filter_by_outgoing_links(beans: list[Bean], filters: Sequence[LinkFilter]) -> list[Bean]:
    if not filters:
        return beans
    return [b for b in beans if _has_outgoing(b, filters)]


def exclude_by_outgoing_links(beans: list[Bean], filters: Sequence[LinkFilter]) -> list[Bean]:
    if not filters:
        return beans
    return [b for b in beans if not _has_outgoing(b, filters)]


def filter_by_incoming_links(beans: list[Bean], filters: Sequence[LinkFilter], index: LinkIndex) -> list[Bean]:
    if not filters:
        return beans
    return [b for b in beans if _has_incoming(b, filters, index)]


def exclude_by_incoming_links(beans: list[Bean], filters: Sequence[LinkFilter], index: LinkIndex) -> list[Bean]:
    if not filters:
        return beans
    return [b for b in beans if not _has_incoming(b, filters, index)]


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def sort_beans(beans: Iterable[Bean], sort_by: str | None, cfg: BeansConfig) -> list[Bean]:
    """Return beans ordered by sort_by (created, updated, status, priority, id, or None for the default).

    Default order: non-archive beans first, then configured type order
    (unknown types last), then ID.
    """
    items = list(beans)

    if sort_by in ("created", "updated"):
        attr = f"{sort_by}_at"

        def _ts_key(b: Bean) -> tuple[bool, float, str]:
            ts = getattr(b, attr)
            return (ts is None, -ts.timestamp() if ts is not None else 0.0, b.id)

        return sorted(items, key=_ts_key)

    if sort_by == "status":
        order = {name: i for i, name in enumerate(cfg.status_names())}
        unknown = len(order)
        # Unknown statuses keep their input order after all known ones.
        keyed = [
            ((order[b.status], b.id, 0) if b.status in order else (unknown, "", pos), b)
            for pos, b in enumerate(items)
        ]
        return [b for _, b in sorted(keyed, key=lambda kb: kb[0])]

    if sort_by == "priority":
        ranks = {name: i for i, name in enumerate(cfg.priority_names())}
        # Missing and unknown priorities rank as the default priority.
        fallback = ranks.get(cfg.default_priority, len(ranks))
        return sorted(items, key=lambda b: (ranks.get(b.priority, fallback), b.id))

    if sort_by == "id":
        return sorted(items, key=lambda b: b.id)

    if sort_by:
        msg = f"unknown sort key {sort_by!r} (expected one of: {', '.join(SORT_KEYS)})"
        raise ValueError(msg)

    type_order = {name: i for i, name in enumerate(cfg.type_names())}
    unknown_type = len(type_order)
    return sorted(
        items,
        key=lambda b: (cfg.is_archive_status(b.status), type_order.get(b.type, unknown_type), b.id),
    )
