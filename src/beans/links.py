"""Point-in-time relationship index over a bean snapshot.

Build one per query from the full snapshot and throw it away afterwards:

    index = build_index(store.find_all())
    index.is_incoming_target("blocks", "ab12")

The index never updates itself, so holding on to it across a reload
answers questions about beans that may no longer exist.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from beans.models import Bean


@dataclass(frozen=True)
class IncomingLink:
    """A link from source to some bean, seen from the target's side."""

    source: Bean
    link_type: str


class LinkIndex:
    """ID lookup plus reverse (incoming) link lookup for one snapshot."""

    def __init__(self, beans: Iterable[Bean]) -> None:
        self._by_id: dict[str, Bean] = {}
        self._incoming: dict[str, list[IncomingLink]] = defaultdict(list)
        self._edges: set[tuple[str, str]] = set()   # (link_type, target_id)

        for bean in beans:
            self._by_id[bean.id] = bean
            for link in bean.links:
                self._incoming[link.target].append(IncomingLink(bean, link.type))
                self._edges.add((link.type, link.target))

    def by_id(self, bean_id: str) -> Bean | None:
        return self._by_id.get(bean_id)

    def is_incoming_target(self, link_type: str, bean_id: str) -> bool:
        """True if any bean holds a link_type link pointing at bean_id."""
        return (link_type, bean_id) in self._edges

    def incoming_links(self, bean_id: str) -> list[IncomingLink]:
        return list(self._incoming.get(bean_id, ()))

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, bean_id: object) -> bool:
        return bean_id in self._by_id


def build_index(beans: Iterable[Bean]) -> LinkIndex:
    return LinkIndex(beans)
