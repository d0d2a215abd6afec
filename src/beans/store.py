"""Thread-safe in-memory bean snapshot backed by one Markdown file per bean.

BeanStore is the public API:
    store = BeanStore(cfg.beans_dir, cfg)
    store.load()
    bean = store.create("Fix login redirect", type="bug")
    bean.status = "in-progress"
    store.save(bean)
    store.watch(lambda: print("beans changed"))

The files are the source of truth. The snapshot (ID -> Bean) and the search
index are derived from them: reload() rebuilds both wholesale, save() and
delete() patch single entries after the disk write has succeeded.

One lock guards the snapshot and the search index. Readers get copies taken
under the lock and iterate without it, so a watcher-triggered reload never
waits on a slow consumer.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from beans.errors import (
    AmbiguousIDError,
    BeanFileError,
    BeanParseError,
    NotFoundError,
    SearchIndexError,
    ValidationError,
)
from beans.frontmatter import parse_bean, render_bean
from beans.links import IncomingLink, build_index
from beans.models import FILE_EXTENSION, Bean, Link, build_filename, new_bean_id, now_utc, parse_filename, slugify
from beans.search import DEFAULT_SEARCH_LIMIT, SearchDoc, SearchIndex
from beans.watcher import DEBOUNCE_DELAY, ChangeWatcher

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from beans.config import BeansConfig

logger = logging.getLogger("beans.store")


class BeanStore:
    """Markdown-backed bean repository rooted at a single directory."""

    def __init__(self, root: Path | str, cfg: BeansConfig, *, debounce: float = DEBOUNCE_DELAY) -> None:
        self.root = Path(root).absolute()
        self.cfg = cfg
        self._lock = threading.Lock()
        self._beans: dict[str, Bean] = {}
        self._index = SearchIndex()
        self._watcher = ChangeWatcher(self, debounce=debounce)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def init(self) -> None:
        """Create the repository directory if it does not exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"creating {self.root}: {exc}"
            raise BeanFileError(msg) from exc

    def full_path(self, bean: Bean) -> Path:
        return self.root / bean.path

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-read every record file and replace the snapshot and search index.

        Malformed files are skipped with a warning. If the root cannot be
        listed, raises BeanFileError; if the search index cannot be rebuilt,
        raises SearchIndexError. Either way the previous snapshot stays.
        """
        try:
            entries = sorted(os.scandir(self.root), key=lambda e: e.name)
        except OSError as exc:
            msg = f"listing {self.root}: {exc}"
            raise BeanFileError(msg) from exc

        loaded: dict[str, Bean] = {}
        for entry in entries:
            if not entry.name.endswith(FILE_EXTENSION) or not entry.is_file():
                continue
            path = Path(entry.path)
            try:
                bean = self._load_bean(path)
            except (OSError, UnicodeDecodeError, BeanParseError) as exc:
                logger.warning("skipping %s: %s", path, exc)
                continue
            if bean.id in loaded:
                logger.warning("skipping %s: duplicate ID %s (already loaded from %s)",
                               path, bean.id, loaded[bean.id].path)
                continue
            loaded[bean.id] = bean

        with self._lock:
            # The batch runs in one transaction; on failure the old index and
            # the old snapshot both stay.
            try:
                self._index.index_batch(SearchDoc.from_bean(b) for b in loaded.values())
            except sqlite3.Error as exc:
                msg = f"rebuilding search index: {exc}"
                raise SearchIndexError(msg) from exc
            self._beans = loaded

        logger.debug("loaded %d beans from %s", len(loaded), self.root)

    load = reload

    def _load_bean(self, path: Path) -> Bean:
        """Parse one record file; ID, slug and path come from the filename."""
        bean = parse_bean(path.read_text(encoding="utf-8"))
        bean.id, bean.slug = parse_filename(path.name, self.cfg.prefix)
        bean.path = path.relative_to(self.root).as_posix()
        if not bean.priority:
            bean.priority = self.cfg.default_priority

        if bean.created_at is None:
            if bean.updated_at is not None:
                bean.created_at = bean.updated_at
            else:
                mtime = path.stat().st_mtime
                bean.created_at = datetime.fromtimestamp(mtime, UTC).replace(microsecond=0)
        if bean.updated_at is None:
            bean.updated_at = bean.created_at
        return bean

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def find_all(self) -> list[Bean]:
        """Copies of every bean in the current snapshot. No I/O."""
        with self._lock:
            return [b.copy() for b in self._beans.values()]

    def find_by_id(self, id_or_prefix: str) -> Bean:
        """Exact ID match first, then a unique ID prefix. Raises NotFoundError."""
        with self._lock:
            return self._resolve(id_or_prefix).copy()

    def _resolve(self, id_or_prefix: str) -> Bean:
        # Lock must be held.
        bean = self._beans.get(id_or_prefix)
        if bean is not None:
            return bean
        if id_or_prefix:
            matches = [b for bid, b in self._beans.items() if bid.startswith(id_or_prefix)]
            if len(matches) == 1:
                return matches[0]
            if matches:
                raise AmbiguousIDError(id_or_prefix, [b.id for b in matches])
        raise NotFoundError(id_or_prefix)

    def exists(self, bean_id: str) -> bool:
        with self._lock:
            return bean_id in self._beans

    def __len__(self) -> int:
        with self._lock:
            return len(self._beans)

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[Bean]:
        """Full-text search over slug, title and body. Best match first."""
        with self._lock:
            ids = self._index.search(query, limit)
            return [self._beans[i].copy() for i in ids if i in self._beans]

    def find_incoming_links(self, bean_id: str) -> list[IncomingLink]:
        """Beans that link to bean_id, with the link type."""
        return build_index(self.find_all()).incoming_links(bean_id)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def validate(self, bean: Bean) -> None:
        if not self.cfg.is_valid_status(bean.status):
            msg = f"invalid status {bean.status!r} (must be one of: {self.cfg.status_list()})"
            raise ValidationError(msg)
        if bean.type and not self.cfg.is_valid_type(bean.type):
            msg = f"invalid type {bean.type!r} (must be one of: {self.cfg.type_list()})"
            raise ValidationError(msg)
        if bean.priority and not self.cfg.is_valid_priority(bean.priority):
            msg = f"invalid priority {bean.priority!r} (must be one of: {self.cfg.priority_list()})"
            raise ValidationError(msg)

    def save(self, bean: Bean) -> Bean:
        """Validate, write to disk, then update the snapshot and search index.

        New beans (empty ID) get an ID, slug, path and created_at. updated_at
        is refreshed on every save. On failure nothing in memory changes.
        The caller's bean is updated with the assigned fields and returned.
        """
        self.validate(bean)
        stored = bean.copy()
        now = now_utc()

        with self._lock:
            if not stored.id:
                stored.id = self._unique_id()
            if not stored.slug and stored.title and not stored.path:
                stored.slug = slugify(stored.title)
            if not stored.path:
                stored.path = build_filename(stored.id, stored.slug)
            if stored.created_at is None:
                stored.created_at = now
            stored.updated_at = now

            self._write(stored)

            self._beans[stored.id] = stored
            try:
                self._index.index_one(stored.id, stored.slug, stored.title, stored.body)
            except Exception:
                logger.exception("failed to index bean %s", stored.id)

        bean.id, bean.slug, bean.path = stored.id, stored.slug, stored.path
        bean.created_at, bean.updated_at = stored.created_at, stored.updated_at
        return bean

    def create(
        self,
        title: str,
        *,
        status: str | None = None,
        type: str | None = None,  # noqa: A002
        priority: str | None = None,
        body: str = "",
        tags: Iterable[str] = (),
        links: Iterable[Link] = (),
    ) -> Bean:
        """Build a new bean with configured defaults and save it."""
        bean = Bean(
            title=title,
            status=status or self.cfg.default_status,
            type=self.cfg.default_type if type is None else type,
            priority=self.cfg.default_priority if priority is None else priority,
            body=body,
        )
        for tag in tags:
            bean.add_tag(tag)
        for link in links:
            bean.add_link(link.type, link.target)
        return self.save(bean)

    def delete(self, id_or_prefix: str) -> Bean:
        """Remove the bean's file, snapshot entry and index entry."""
        with self._lock:
            bean = self._resolve(id_or_prefix)
            path = self.root / bean.path
            try:
                path.unlink()
            except FileNotFoundError:
                logger.debug("file already gone: %s", path)
            except OSError as exc:
                msg = f"deleting {path}: {exc}"
                raise BeanFileError(msg) from exc

            del self._beans[bean.id]
            try:
                self._index.delete(bean.id)
            except Exception:
                logger.exception("failed to remove bean %s from search index", bean.id)
        return bean

    def remove_links_to(self, target_id: str) -> int:
        """Strip links pointing at target_id from every other bean. Returns links removed."""
        removed = 0
        for bean in self.find_all():
            if bean.id == target_id:
                continue
            n = bean.remove_links_to(target_id)
            if n:
                self.save(bean)
                removed += n
        return removed

    def _unique_id(self) -> str:
        # Lock must be held.
        while True:
            bean_id = new_bean_id(self.cfg.prefix, self.cfg.id_length)
            if bean_id not in self._beans:
                return bean_id

    def _write(self, bean: Bean) -> None:
        """Render and write atomically (tmp file + rename)."""
        path = self.root / bean.path
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(render_bean(bean), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            msg = f"writing {path}: {exc}"
            raise BeanFileError(msg) from exc

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    @property
    def watcher(self) -> ChangeWatcher:
        return self._watcher

    @property
    def watching(self) -> bool:
        return self._watcher.watching

    def watch(self, on_change: Callable[[], None] | None = None) -> None:
        """Reload automatically on file changes; see ChangeWatcher.watch."""
        self._watcher.watch(on_change)

    def unwatch(self) -> None:
        self._watcher.unwatch()

    def subscribe(self, callback: Callable[[], None]) -> None:
        self._watcher.subscribe(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        self._watcher.unsubscribe(callback)

    def close(self) -> None:
        """Stop watching and release the search index."""
        self._watcher.unwatch()
        with self._lock:
            self._index.close()
