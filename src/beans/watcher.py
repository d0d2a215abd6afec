"""inotify watcher: watches the beans directory and reloads the store on change.

    store.watch(on_change)      # start; on_change runs after every reload
    store.unwatch()             # stop; no callback fires after this returns

Only files directly in the repository root whose name ends in .md count
(inotify watches are non-recursive, so subdirectories never report).
CREATE, CLOSE_WRITE, MODIFY, DELETE, MOVED_FROM and MOVED_TO all qualify.

Each qualifying event restarts a single debounce timer. When the timer runs
out (no event for `debounce` seconds) the store is reloaded and, if the
reload succeeded and we are still watching, every subscriber is called.
An editor's write-to-temp + rename burst therefore costs one reload.

Errors reading the inotify handle are logged and the loop keeps going; a
queue overflow schedules a reload since individual events were lost. Only
unwatch() ends the loop.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import inotify_simple

from beans.errors import BeanFileError, WatchError
from beans.models import FILE_EXTENSION

if TYPE_CHECKING:
    from collections.abc import Callable

    from beans.store import BeanStore

logger = logging.getLogger("beans.watcher")

DEBOUNCE_DELAY = 0.1          # seconds of quiescence before reloading
_READ_TIMEOUT_MS = 200        # how often the loop checks the stop event
_ERROR_BACKOFF = 0.5          # seconds to wait after a failed read

flags = inotify_simple.flags

_WATCH_FLAGS = (
    flags.CREATE | flags.CLOSE_WRITE | flags.MODIFY
    | flags.DELETE | flags.MOVED_FROM | flags.MOVED_TO
)


class ChangeWatcher:
    """Debounced filesystem watcher bound to one BeanStore."""

    def __init__(self, store: BeanStore, *, debounce: float = DEBOUNCE_DELAY) -> None:
        self._store = store
        self.debounce = debounce
        self._lock = threading.RLock()
        # Held while subscribers run; unwatch() takes it to wait out a dispatch.
        # Reentrant: a subscriber may call unwatch() from inside its callback.
        self._dispatch_lock = threading.RLock()
        self._subscribers: list[Callable[[], None]] = []
        self._watching = False
        self._stop: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._timer: threading.Timer | None = None

    @property
    def watching(self) -> bool:
        with self._lock:
            return self._watching

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    def watch(self, callback: Callable[[], None] | None = None) -> None:
        """Start watching. Already watching: only registers callback.

        Raises WatchError if the inotify handle cannot be opened.
        """
        with self._lock:
            if callback is not None:
                self.subscribe(callback)
            if self._watching:
                return

            inotify = self._open()
            stop = threading.Event()
            self._stop = stop
            self._watching = True
            self._thread = threading.Thread(
                target=self._loop,
                args=(inotify, stop),
                name="beans-watcher",
                daemon=True,
            )
            self._thread.start()
        logger.info("watching %s", self._store.root)

    def unwatch(self) -> None:
        """Stop watching and drop all subscribers. Safe to call repeatedly."""
        with self._lock:
            if not self._watching:
                return
            self._watching = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self._stop is not None:
                self._stop.set()
            thread, self._thread = self._thread, None
            self._subscribers.clear()

        # Subscribers run outside self._lock; wait for any dispatch in flight.
        with self._dispatch_lock:
            pass
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        logger.info("stopped watching %s", self._store.root)

    def _open(self) -> inotify_simple.INotify:
        root = self._store.root
        try:
            inotify = inotify_simple.INotify()
        except (OSError, AttributeError) as exc:
            msg = f"inotify unavailable: {exc}"
            raise WatchError(msg) from exc
        try:
            inotify.add_watch(str(root), _WATCH_FLAGS)
        except OSError as exc:
            inotify.close()
            msg = f"cannot watch {root}: {exc}"
            raise WatchError(msg) from exc
        return inotify

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    def _loop(self, inotify: inotify_simple.INotify, stop: threading.Event) -> None:
        try:
            while not stop.is_set():
                try:
                    events = inotify.read(timeout=_READ_TIMEOUT_MS)
                except OSError as exc:
                    logger.warning("inotify read failed: %s", exc)
                    stop.wait(_ERROR_BACKOFF)
                    continue
                for event in events:
                    if stop.is_set():
                        break
                    self._handle_event(event.name, event.mask, stop)
        finally:
            inotify.close()

    def _handle_event(self, name: str, mask: int, stop: threading.Event) -> None:
        if mask & flags.Q_OVERFLOW:
            logger.warning("inotify queue overflowed, scheduling full reload")
            self._schedule(stop)
            return
        if mask & flags.IGNORED:
            logger.warning("watch on %s was removed", self._store.root)
            return
        if mask & flags.ISDIR or not name.endswith(FILE_EXTENSION):
            return
        if not mask & _WATCH_FLAGS:
            return
        logger.debug("event %s on %s", flags.from_mask(mask), name)
        self._schedule(stop)

    def _schedule(self, stop: threading.Event) -> None:
        """(Re)start the debounce timer."""
        with self._lock:
            if not self._watching or stop.is_set():
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._fire, args=(stop,))
            self._timer.daemon = True
            self._timer.start()

    def _fire(self, stop: threading.Event) -> None:
        with self._lock:
            if not self._watching or stop.is_set():
                return

        try:
            self._store.reload()
        except BeanFileError as exc:
            logger.debug("reload failed, keeping previous snapshot: %s", exc)
            return
        except Exception:
            logger.exception("reload failed, keeping previous snapshot")
            return

        with self._dispatch_lock:
            # Checked again: unwatch() may have run during the reload.
            with self._lock:
                if not self._watching or stop.is_set():
                    return
                subscribers = list(self._subscribers)
            for callback in subscribers:
                if stop.is_set():
                    return
                try:
                    callback()
                except Exception:
                    logger.exception("change subscriber %r failed", callback)
