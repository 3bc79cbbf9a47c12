"""
Named job handlers.

Handlers are kept in memory only and live independently of job records:
they may be registered before a job exists and stay registered after the
job completes.
"""

import logging
import threading
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

JobHandler = Callable[..., None]


class HandlerRegistry:
    """Ordered handler lists keyed by job name."""

    def __init__(self):
        self._handlers: Dict[str, List[JobHandler]] = {}
        self._lock = threading.Lock()

    def add(self, name: str, handler: JobHandler) -> bool:
        """
        Append a handler for ``name``.

        Returns:
            True if added, False if the handler was rejected
        """
        logger.debug(f"Adding job handler for '{name}'")
        if not callable(handler):
            logger.error(f"Rejected job handler for '{name}': {handler!r} is not callable")
            return False
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)
        return True

    def remove(self, name: str, handler: JobHandler) -> bool:
        """
        Remove the first registration of ``handler`` for ``name`` (by identity).

        Returns:
            True if a handler was removed, False if none matched
        """
        logger.debug(f"Removing job handler for '{name}'")
        with self._lock:
            handlers = self._handlers.get(name)
            if not handlers:
                return False
            for index, registered in enumerate(handlers):
                if registered is handler:
                    del handlers[index]
                    if not handlers:
                        del self._handlers[name]
                    return True
        return False

    def handlers(self, name: str) -> List[JobHandler]:
        """Snapshot of the handlers for ``name`` in registration order."""
        with self._lock:
            return list(self._handlers.get(name, ()))

    def names(self) -> List[str]:
        with self._lock:
            return list(self._handlers)
