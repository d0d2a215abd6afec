"""File-based issue store: Markdown files as source of truth, in-memory snapshot as derived index.

Layout:
    .beans.toml                   # project config (statuses, types, ID prefix)
    .beans/
        <id>-<slug>.md            # one bean per file: YAML frontmatter + body

Files are read into a BeanStore snapshot (ID -> Bean) plus an in-memory FTS5
search index. Writes go to disk first, then to memory. A ChangeWatcher keeps
long-running consumers current by reloading after edits made elsewhere.
"""

from beans.config import BeansConfig, init_config, load_config
from beans.errors import (
    AmbiguousIDError,
    BeanError,
    BeanFileError,
    BeanParseError,
    ConfigError,
    NotFoundError,
    SearchIndexError,
    ValidationError,
    WatchError,
)
from beans.links import IncomingLink, LinkIndex, build_index
from beans.models import Bean, Link
from beans.query import BeanFilter, LinkFilter, query_beans, sort_beans
from beans.store import BeanStore
from beans.watcher import ChangeWatcher

__all__ = [
    "AmbiguousIDError",
    "Bean",
    "BeanError",
    "BeanFileError",
    "BeanFilter",
    "BeanParseError",
    "BeanStore",
    "BeansConfig",
    "ChangeWatcher",
    "ConfigError",
    "IncomingLink",
    "Link",
    "LinkFilter",
    "LinkIndex",
    "NotFoundError",
    "SearchIndexError",
    "ValidationError",
    "WatchError",
    "build_index",
    "init_config",
    "load_config",
    "query_beans",
    "sort_beans",
]
