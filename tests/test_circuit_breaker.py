"""
サーキットブレーカーのテスト

- CLOSED → OPEN → HALF_OPEN → CLOSED / OPEN の遷移
- OPEN 中の fast-fail (処理は呼ばれず、失敗数も変わらない)
- HALF_OPEN で通す試験呼び出しは 1 件だけ
- 状態遷移イベントの通知
"""

import asyncio

import pytest

from services.order.app.circuit_breaker import (
    BreakerOpenError,
    BreakerState,
    CircuitBreaker,
)
from services.order.app.events import CircuitStateChanged


class ServiceError(Exception):
    pass


class Operation:
    """呼び出し回数を数える非同期処理"""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.fail:
            raise ServiceError("boom")
        return "ok"


async def trip(breaker: CircuitBreaker) -> None:
    failing = Operation(fail=True)
    for _ in range(breaker.failure_threshold):
        with pytest.raises(ServiceError):
            await breaker.execute(failing)
    assert breaker.state is BreakerState.OPEN


class TestInitialization:
    def test_starts_closed(self, breaker: CircuitBreaker) -> None:
        status = breaker.status()

        assert status.state is BreakerState.CLOSED
        assert status.consecutive_failures == 0
        assert status.failure_threshold == 3
        assert breaker.opened_at is None

    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"failure_threshold": 0}, "failure_threshold must be greater than 0"),
            ({"failure_threshold": -1}, "failure_threshold must be greater than 0"),
            ({"reset_timeout": 0}, "reset_timeout must be greater than 0"),
        ],
    )
    def test_rejects_invalid_configuration(self, kwargs: dict, message: str) -> None:
        with pytest.raises(ValueError, match=message):
            CircuitBreaker("payment", **kwargs)


class TestClosedState:
    @pytest.mark.parametrize("threshold", [1, 3, 5])
    async def test_opens_after_threshold_consecutive_failures(self, clock, threshold: int) -> None:
        breaker = CircuitBreaker("payment", failure_threshold=threshold, clock=clock)
        failing = Operation(fail=True)

        for i in range(threshold):
            assert breaker.state is BreakerState.CLOSED
            with pytest.raises(ServiceError):
                await breaker.execute(failing)
            assert breaker.consecutive_failures == i + 1

        assert breaker.state is BreakerState.OPEN
        assert breaker.opened_at == clock.now

    @pytest.mark.parametrize("threshold", [1, 3, 5])
    async def test_success_resets_failures(self, clock, threshold: int) -> None:
        breaker = CircuitBreaker("payment", failure_threshold=threshold, clock=clock)
        failing = Operation(fail=True)

        for _ in range(threshold - 1):
            with pytest.raises(ServiceError):
                await breaker.execute(failing)

        assert await breaker.execute(Operation()) == "ok"
        assert breaker.state is BreakerState.CLOSED
        assert breaker.consecutive_failures == 0

    async def test_reraises_original_exception(self, breaker: CircuitBreaker) -> None:
        error = ServiceError("original")

        async def failing():
            raise error

        with pytest.raises(ServiceError) as exc_info:
            await breaker.execute(failing)
        assert exc_info.value is error

    async def test_returns_operation_result(self, breaker: CircuitBreaker) -> None:
        async def operation():
            return {"transaction_id": "TXN-1"}

        assert await breaker.execute(operation) == {"transaction_id": "TXN-1"}


class TestOpenState:
    async def test_fast_fails_without_calling_operation(self, breaker, clock) -> None:
        await trip(breaker)
        operation = Operation()

        for _ in range(5):
            clock.advance(1.0)
            with pytest.raises(BreakerOpenError) as exc_info:
                await breaker.execute(operation)
            assert exc_info.value.status.state is BreakerState.OPEN

        assert operation.calls == 0

    async def test_fast_fail_does_not_count_as_failure(self, breaker) -> None:
        await trip(breaker)
        opened_at = breaker.opened_at

        with pytest.raises(BreakerOpenError):
            await breaker.execute(Operation())

        assert breaker.consecutive_failures == 3
        assert breaker.opened_at == opened_at

    async def test_still_open_just_before_reset_timeout(self, breaker, clock) -> None:
        await trip(breaker)
        clock.advance(9.999)

        with pytest.raises(BreakerOpenError):
            await breaker.execute(Operation())


class TestHalfOpenState:
    async def test_successful_trial_closes(self, breaker, clock) -> None:
        await trip(breaker)
        clock.advance(10.0)
        operation = Operation()

        assert await breaker.execute(operation) == "ok"

        assert operation.calls == 1
        assert breaker.state is BreakerState.CLOSED
        assert breaker.consecutive_failures == 0
        assert breaker.opened_at is None

    async def test_failed_trial_reopens_with_fresh_timestamp(self, breaker, clock) -> None:
        await trip(breaker)
        first_opened_at = breaker.opened_at
        clock.advance(15.0)

        with pytest.raises(ServiceError):
            await breaker.execute(Operation(fail=True))

        assert breaker.state is BreakerState.OPEN
        assert breaker.opened_at == first_opened_at + 15.0

        # 新しい opened_at から再び reset_timeout を待つ
        clock.advance(5.0)
        with pytest.raises(BreakerOpenError):
            await breaker.execute(Operation())

    async def test_only_one_trial_admitted_under_race(self, breaker, clock) -> None:
        await trip(breaker)
        clock.advance(10.0)

        gate = asyncio.Event()
        calls = 0

        async def slow_payment():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "ok"

        tasks = [asyncio.create_task(breaker.execute(slow_payment)) for _ in range(5)]
        while sum(task.done() for task in tasks) < 4:
            await asyncio.sleep(0)

        assert breaker.state is BreakerState.HALF_OPEN
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert calls == 1
        assert results.count("ok") == 1
        assert sum(isinstance(r, BreakerOpenError) for r in results) == 4
        assert breaker.state is BreakerState.CLOSED

    async def test_cancelled_trial_reopens(self, breaker, clock) -> None:
        await trip(breaker)
        clock.advance(10.0)

        async def hanging():
            await asyncio.Event().wait()

        task = asyncio.create_task(breaker.execute(hanging))
        while breaker.state is not BreakerState.HALF_OPEN:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert breaker.state is BreakerState.OPEN


class TestConcurrency:
    async def test_lock_not_held_while_operation_runs(self, breaker) -> None:
        observed = []

        async def operation():
            observed.append(breaker._lock.locked())
            observed.append(breaker.status().state)
            return "ok"

        await breaker.execute(operation)

        assert observed == [False, BreakerState.CLOSED]


class TestStateChangeEvents:
    async def test_full_cycle_emits_transitions(self, breaker, clock) -> None:
        events: list[CircuitStateChanged] = []
        breaker.add_listener(events.append)

        await trip(breaker)
        clock.advance(10.0)
        with pytest.raises(ServiceError):
            await breaker.execute(Operation(fail=True))
        clock.advance(10.0)
        await breaker.execute(Operation())

        assert [(e.old_state, e.new_state) for e in events] == [
            ("CLOSED", "OPEN"),
            ("OPEN", "HALF_OPEN"),
            ("HALF_OPEN", "OPEN"),
            ("OPEN", "HALF_OPEN"),
            ("HALF_OPEN", "CLOSED"),
        ]
        assert all(e.breaker == "payment" for e in events)
        assert events[0].consecutive_failures == 3
        assert events[-1].consecutive_failures == 0

    async def test_no_event_for_success_while_closed(self, breaker) -> None:
        events: list[CircuitStateChanged] = []
        breaker.add_listener(events.append)

        await breaker.execute(Operation())
        with pytest.raises(ServiceError):
            await breaker.execute(Operation(fail=True))

        assert events == []

    async def test_listener_error_does_not_break_breaker(self, clock) -> None:
        def broken_listener(event):
            raise RuntimeError("listener down")

        breaker = CircuitBreaker(
            "payment", failure_threshold=1, clock=clock, listeners=[broken_listener]
        )

        with pytest.raises(ServiceError):
            await breaker.execute(Operation(fail=True))

        assert breaker.state is BreakerState.OPEN
