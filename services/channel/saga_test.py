"""Tests for the compensating-action saga."""

import pytest

from services.channel.saga import Saga


@pytest.mark.no_db
class TestSaga:

    @pytest.mark.asyncio
    async def test_success_runs_no_compensation(self):
        undone = []

        async def undo(label):
            undone.append(label)

        async with Saga("ok") as saga:
            saga.on_rollback("a", undo, "a")

        assert undone == []
        assert saga.rolled_back == []

    @pytest.mark.asyncio
    async def test_failure_undoes_newest_first_and_reraises(self):
        undone = []

        async def undo(label):
            undone.append(label)

        with pytest.raises(RuntimeError, match="step 3"):
            async with Saga("import") as saga:
                saga.on_rollback("guest", undo, "guest")
                saga.on_rollback("reservation", undo, "reservation")
                raise RuntimeError("step 3 failed")

        assert undone == ["reservation", "guest"]
        assert saga.rolled_back == ["reservation", "guest"]

    @pytest.mark.asyncio
    async def test_failed_compensation_does_not_stop_the_rest(self):
        undone = []

        async def undo(label):
            undone.append(label)

        async def broken():
            raise ConnectionError("db down")

        with pytest.raises(ValueError):
            async with Saga("import") as saga:
                saga.on_rollback("guest", undo, "guest")
                saga.on_rollback("mapping", broken)
                raise ValueError("boom")

        assert undone == ["guest"]
        assert saga.rollback_failures == ["mapping"]
