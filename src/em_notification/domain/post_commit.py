"""Post-commit hook list.

Side effects that must not influence a unit of work's durability (seller/buyer
notifications) are queued here while the unit runs and executed only after
``commit()`` returns. Each hook failure is logged and swallowed, so a broken
notification sink cannot roll back or fail the triggering operation.
"""

import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Hook = Callable[[], Awaitable[None]]


class PostCommitHooks:
    def __init__(self) -> None:
        self._hooks: list[tuple[str, Hook]] = []

    def add(self, name: str, hook: Hook) -> None:
        self._hooks.append((name, hook))

    def __len__(self) -> int:
        return len(self._hooks)

    def discard(self) -> None:
        """Drop queued hooks (the unit of work rolled back)."""
        self._hooks.clear()

    async def run(self) -> int:
        """Run queued hooks in order; returns how many succeeded."""
        hooks, self._hooks = self._hooks, []
        ok = 0
        for name, hook in hooks:
            try:
                await hook()
                ok += 1
            except Exception:
                logger.exception("Post-commit hook %s failed", name)
        return ok
