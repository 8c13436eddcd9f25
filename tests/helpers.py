"""Helpers shared by the test modules."""

import asyncio
from typing import Any, Optional

from coinflow.engine.context import CashbookContext
from coinflow.models.ledger import Scope
from coinflow.services.storage import InMemoryRemoteStore
from coinflow.services.storage.interface import Order, Row


USER_ID = "user-1"


def run(coro):
    return asyncio.run(coro)


async def load_and_drain(context: CashbookContext, scope: Scope) -> None:
    await context.load(scope)
    await context.drain()


def tx_data(
    type: str = "CASH_IN",
    amount: str = "100.00",
    category: str = "Salary",
    mode: str = "Cash",
    **extra: Any,
) -> dict:
    return {"type": type, "amount": amount, "category": category, "mode": mode, **extra}


class GatedRemoteStore(InMemoryRemoteStore):
    """Remote store whose selects wait until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.gate: Optional[asyncio.Event] = None

    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        order: Optional[Order] = None,
    ) -> list[Row]:
        if self.gate is not None:
            await self.gate.wait()
        return await super().select(table, filters, order)
