"""Session-scoped undo stack of inverse operations.

Each successful local mutation pushes a closure that performs its inverse.
``undo()`` pops the newest closure and runs it with recording suspended, so
the inverse call does not push an undo step of its own and the stack
actually drains.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

UndoAction = Callable[[], Awaitable[object]]


@dataclass
class UndoStep:
    label: str
    action: UndoAction


class UndoStack:
    """LIFO of inverse operations, never persisted or shared between clients."""

    def __init__(
        self,
        limit: Optional[int] = None,
        keep_failed: Optional[Callable[[Exception], bool]] = None,
    ) -> None:
        self._steps: list[UndoStep] = []
        self._limit = limit
        self._keep_failed = keep_failed
        self._replaying = False

    def record(self, label: str, action: UndoAction) -> bool:
        """Push an inverse step. Ignored (returns False) while an undo is running."""
        if self._replaying:
            return False
        self._steps.append(UndoStep(label=label, action=action))
        if self._limit is not None and len(self._steps) > self._limit:
            self._steps.pop(0)
        return True

    async def undo(self) -> Optional[str]:
        """Run the newest inverse step. Returns its label, or None if the stack is empty.

        If the inverse call fails the error propagates.  The step goes back on
        the stack only when ``keep_failed`` says the failure may pass (all
        failures, if no predicate was given); otherwise it is discarded so
        the older steps stay reachable.
        """
        if not self._steps:
            return None
        step = self._steps.pop()
        self._replaying = True
        try:
            await step.action()
        except Exception as exc:
            if self._keep_failed is None or self._keep_failed(exc):
                self._steps.append(step)
            else:
                logger.info(f"Discarded undo step {step.label}: {exc}")
            raise
        finally:
            self._replaying = False
        logger.debug(f"Undid {step.label}")
        return step.label

    @property
    def replaying(self) -> bool:
        return self._replaying

    def labels(self) -> list[str]:
        """Step labels, oldest first."""
        return [step.label for step in self._steps]

    def clear(self) -> None:
        self._steps.clear()

    def __len__(self) -> int:
        return len(self._steps)
