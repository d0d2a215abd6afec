"""Exception types raised by the bean store, watcher and config loader."""

from __future__ import annotations


class BeanError(Exception):
    """Base class for all beans errors."""


class NotFoundError(BeanError):
    """No bean matches the requested ID."""

    def __init__(self, bean_id: str) -> None:
        super().__init__(f"bean not found: {bean_id}")
        self.bean_id = bean_id


class AmbiguousIDError(NotFoundError):
    """An ID prefix matches more than one bean."""

    def __init__(self, prefix: str, candidates: list[str]) -> None:
        BeanError.__init__(
            self,
            f"ambiguous ID prefix {prefix!r} matches {len(candidates)} beans: {', '.join(sorted(candidates))}",
        )
        self.bean_id = prefix
        self.candidates = sorted(candidates)


class ValidationError(BeanError):
    """A bean field holds a value the configuration does not allow."""


class BeanFileError(BeanError):
    """Reading, writing or listing a record file failed."""


class BeanParseError(BeanError):
    """A record file could not be parsed into a bean."""


class WatchError(BeanError):
    """The filesystem notification subsystem could not be set up."""


class ConfigError(BeanError):
    """The project config file is malformed."""


class SearchIndexError(BeanError):
    """The full-text index could not be rebuilt."""
