"""Compensating-action saga for multi-step writes.

The repositories each own their connection, so a guest insert, a reservation
insert and the mapping writes cannot share one database transaction. Each
completed step registers how to undo itself; if a later step fails the undo
actions run newest-first and the original exception propagates.

    async with Saga("import booking 123") as saga:
        guest = await repo.insert_guest(...)
        saga.on_rollback(f"delete guest {guest.id}", repo.delete_guest, guest.id)
        ...
"""

from typing import Any, Awaitable, Callable, List, Tuple

from loguru import logger


class Saga:

    def __init__(self, name: str):
        self.name = name
        self._compensations: List[Tuple[str, Callable[..., Awaitable[Any]], tuple]] = []
        self.rolled_back: List[str] = []
        self.rollback_failures: List[str] = []

    def on_rollback(self, label: str, action: Callable[..., Awaitable[Any]], *args) -> None:
        self._compensations.append((label, action, args))

    async def rollback(self) -> None:
        while self._compensations:
            label, action, args = self._compensations.pop()
            try:
                await action(*args)
                self.rolled_back.append(label)
            except Exception as e:
                # Keep undoing the remaining steps
                logger.error(f"Saga '{self.name}': compensation '{label}' failed: {e}")
                self.rollback_failures.append(label)

    async def __aenter__(self) -> "Saga":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and issubclass(exc_type, Exception):
            logger.warning(f"Saga '{self.name}' failed ({exc_val}), rolling back {len(self._compensations)} step(s)")
            await self.rollback()
        else:
            self._compensations.clear()
        return False
