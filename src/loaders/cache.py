"""Session cache for module graph entries, with redirect collapsing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, Mapping, Optional, TypeVar

from constants import Constants
from resolution.errors import GraphError
from resolution.models import GraphEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """At most one in-flight computation per key.

    Concurrent callers for the same key await the same task and observe the
    same result or exception. Waiters are shielded, so a cancelled waiter
    leaves the shared work running for the others. Finished tasks are
    forgotten; results are memoized by the caller, not here.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, "asyncio.Task[T]"] = {}
        self.started = 0

    async def run(self, key: str, compute: Callable[[], Awaitable[T]]) -> T:
        """Run ``compute`` for ``key`` unless a run for that key is already in flight."""
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(compute())
            self._tasks[key] = task
            self.started += 1
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: "asyncio.Task[T]") -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled():
            # Mark the exception retrieved; waiters re-raise it themselves
            task.exception()

    def in_flight(self) -> int:
        return len(self._tasks)

    async def cancel_all(self) -> None:
        """Cancel every in-flight task and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class InfoCache:
    """Specifier -> graph entry store owned by exactly one backend.

    Entries and redirects are only written through ``commit``, which never
    awaits, so a load that is cancelled or fails before its commit leaves the
    cache exactly as it was. Lookups follow redirects to the terminal entry.
    """

    def __init__(self, max_redirects: int = Constants.MAX_REDIRECTS):
        """Initialize the cache.

        Args:
            max_redirects: Longest redirect chain followed before giving up.
        """
        self._max_redirects = max_redirects
        self._modules: Dict[str, GraphEntry] = {}
        self._redirects: Dict[str, str] = {}
        self._loads: SingleFlight[None] = SingleFlight()

    @property
    def load_count(self) -> int:
        """Number of underlying loads started since creation."""
        return self._loads.started

    def final_specifier(self, specifier: str) -> str:
        """Follow known redirects from ``specifier`` to the last known hop.

        Raises:
            GraphError: the chain is longer than allowed or loops.
        """
        original = specifier
        for _ in range(self._max_redirects + 1):
            target = self._redirects.get(specifier)
            if target is None:
                return specifier
            specifier = target
        raise GraphError(f"Too many redirects for '{original}'", specifier=original)

    def lookup(self, specifier: str) -> Optional[GraphEntry]:
        """Return the terminal entry for ``specifier`` if it is known."""
        return self._modules.get(self.final_specifier(specifier))

    def commit(
        self,
        modules: Iterable[GraphEntry] = (),
        redirects: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Record entries and redirects in one step."""
        new_modules = {entry.specifier: entry for entry in modules}
        new_redirects = dict(redirects or {})
        for source, target in new_redirects.items():
            if source == target:
                raise GraphError(f"Redirect loop at '{source}'", specifier=source)
        self._modules.update(new_modules)
        self._redirects.update(new_redirects)

    async def get(
        self, specifier: str, load: Callable[[str], Awaitable[None]]
    ) -> GraphEntry:
        """Return the terminal entry for ``specifier``, loading what is missing.

        ``load(key)`` must commit either an entry for ``key`` or a redirect
        away from it. Loads are de-duplicated per key, so concurrent callers
        for any alias in a redirect chain share one load per hop.

        Raises:
            GraphError: the chain is too long, or a load committed nothing
                for its key.
        """
        for _ in range(self._max_redirects + 2):
            key = self.final_specifier(specifier)
            entry = self._modules.get(key)
            if entry is not None:
                return entry
            await self._loads.run(key, lambda key=key: load(key))
            if key not in self._modules and key not in self._redirects:
                raise GraphError(
                    f"Unreachable: '{key}' was loaded but is not part of the graph",
                    specifier=specifier,
                )
        raise GraphError(f"Too many redirects for '{specifier}'", specifier=specifier)

    async def close(self) -> None:
        """Cancel in-flight loads and drop all state."""
        await self._loads.cancel_all()
        self.clear()

    def clear(self) -> None:
        """Clear all cached entries and redirects."""
        self._modules.clear()
        self._redirects.clear()

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "modules": len(self._modules),
            "redirects": len(self._redirects),
            "loads_started": self._loads.started,
            "loads_in_flight": self._loads.in_flight(),
        }
