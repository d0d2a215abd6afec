"""Read and write bean record files: YAML frontmatter followed by a Markdown body.

    ---
    title: Fix login redirect
    status: open
    type: bug
    priority: high
    tags:
    - auth
    links:
    - blocks: ab12
    created_at: '2024-01-15T10:30:00Z'
    updated_at: '2024-01-15T10:30:00Z'
    ---

    Body text.

ID and slug are not stored in the header; they come from the filename.
"""

from __future__ import annotations

import re
from typing import Any

import yaml

from beans.errors import BeanParseError
from beans.models import Bean, Link, format_timestamp, parse_timestamp

_FM_PATTERN = re.compile(r"\A---[ \t]*\n(.*?)^---[ \t]*(?:\n|\Z)", re.DOTALL | re.MULTILINE)


def parse_bean(text: str) -> Bean:
    """Parse record text into a Bean. Raises BeanParseError on a malformed header."""
    m = _FM_PATTERN.match(text)
    if not m:
        return Bean(body=text)

    try:
        data = yaml.safe_load(m.group(1)) or {}
    except yaml.YAMLError as exc:
        msg = f"invalid frontmatter: {exc}"
        raise BeanParseError(msg) from exc
    if not isinstance(data, dict):
        msg = "frontmatter is not a mapping"
        raise BeanParseError(msg)

    body = text[m.end():]
    if body.startswith("\n"):
        body = body[1:]

    try:
        return Bean(
            title=str(data.get("title") or ""),
            status=str(data.get("status") or ""),
            type=str(data.get("type") or ""),
            priority=str(data.get("priority") or ""),
            body=body,
            tags=_parse_tags(data.get("tags")),
            links=_parse_links(data.get("links")),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )
    except (TypeError, ValueError) as exc:
        raise BeanParseError(str(exc)) from exc


def render_bean(bean: Bean) -> str:
    header: dict[str, Any] = {"title": bean.title, "status": bean.status}
    if bean.type:
        header["type"] = bean.type
    if bean.priority:
        header["priority"] = bean.priority
    if bean.tags:
        header["tags"] = list(bean.tags)
    if bean.links:
        header["links"] = [link.to_dict() for link in bean.links]
    if bean.created_at is not None:
        header["created_at"] = format_timestamp(bean.created_at)
    if bean.updated_at is not None:
        header["updated_at"] = format_timestamp(bean.updated_at)

    out = "---\n" + yaml.safe_dump(header, sort_keys=False, allow_unicode=True) + "---\n"
    if bean.body:
        out += "\n" + bean.body
    return out


def _parse_tags(raw: Any) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        msg = f"tags must be a list, got {type(raw).__name__}"
        raise TypeError(msg)
    return [str(t) for t in raw]


def _parse_links(raw: Any) -> list[Link]:
    """Links are a list of single-key mappings: [{blocks: ab12}, {parent: ep01}]."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        msg = f"links must be a list, got {type(raw).__name__}"
        raise TypeError(msg)
    links: list[Link] = []
    for item in raw:
        if not isinstance(item, dict) or len(item) != 1:
            msg = f"malformed link entry: {item!r}"
            raise ValueError(msg)
        ((link_type, target),) = item.items()
        links.append(Link(str(link_type), str(target)))
    return links
