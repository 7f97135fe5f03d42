"""
Order Service — サーキットブレーカー

Circuit Breaker パターン:
  下流サービス(ここでは Payment Service)の障害が続いたら、
  しばらく呼び出し自体をやめて即座に失敗させる(fast-fail)。
  一定時間が経ったら 1 件だけ試験的に通し、回復したかを確かめる。

  状態遷移:
  ┌────────┐  連続失敗が閾値に到達   ┌──────┐
  │ CLOSED │ ─────────────────────▶ │ OPEN │
  └────────┘                         └──────┘
      ▲                                │  ▲
      │ 試験呼び出し成功    reset_timeout │  │ 試験呼び出し失敗
      │                     経過        ▼  │
      │                            ┌───────────┐
      └─────────────────────────── │ HALF_OPEN │
                                   └───────────┘

  HALF_OPEN は試験呼び出し 1 件の間だけ存在する。
  状態の判定と遷移は asyncio.Lock で直列化し、ラップした処理そのものは
  ロックの外で実行する(遅い決済呼び出しが status() を妨げないように)。
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import TypeVar

from pydantic import BaseModel

from .events import CircuitStateChanged

logger = logging.getLogger(__name__)

T = TypeVar("T")

StateListener = Callable[[CircuitStateChanged], None]


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class BreakerStatus(BaseModel):
    """ブレーカーの現在状態(観測用)"""
    name: str
    state: BreakerState
    consecutive_failures: int
    failure_threshold: int


class BreakerOpenError(Exception):
    """ブレーカーが呼び出しを拒否した(処理は実行されていない)"""

    def __init__(self, status: BreakerStatus) -> None:
        super().__init__(f"Circuit breaker '{status.name}' is {status.state.value}")
        self.status = status


class CircuitBreaker:
    """
    任意の非同期処理を保護するサーキットブレーカー。

    注文・決済のことは何も知らない。1 つの依存先につき 1 インスタンスを
    起動時に生成し、オーケストレーターに渡して使う。
    clock は単調増加する秒数を返す関数(テストでは差し替える)。
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        reset_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        listeners: list[StateListener] | None = None,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be greater than 0")
        if reset_timeout <= 0:
            raise ValueError("reset_timeout must be greater than 0")

        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._listeners: list[StateListener] = list(listeners or [])

        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def opened_at(self) -> float | None:
        return self._opened_at

    def add_listener(self, listener: StateListener) -> None:
        """状態遷移の通知先を登録する。"""
        self._listeners.append(listener)

    def status(self) -> BreakerStatus:
        """最後に確定した状態を返す。ロックは取らない。"""
        return BreakerStatus(
            name=self.name,
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            failure_threshold=self.failure_threshold,
        )

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        operation をブレーカー越しに実行する。

        1. OPEN かつ reset_timeout 経過 → HALF_OPEN にして、この呼び出しだけを通す
        2. OPEN (未経過) または HALF_OPEN (試験中) → BreakerOpenError。失敗数は増やさない
        3. 成功 → 失敗数を 0 に戻して CLOSED
        4. 失敗 → 失敗数を加算し、閾値到達か試験呼び出しなら OPEN。元の例外を再送出
        """
        async with self._lock:
            self._admit()

        try:
            result = await operation()
        except (Exception, asyncio.CancelledError) as exc:
            async with self._lock:
                self._record_failure(exc)
            raise

        async with self._lock:
            self._record_success()
        return result

    # ── 状態遷移 (ロック保持中に呼ぶ) ───────────────

    def _admit(self) -> None:
        if self._state is BreakerState.OPEN:
            elapsed = self._clock() - self._opened_at
            if elapsed >= self.reset_timeout:
                self._transition(BreakerState.HALF_OPEN)
                logger.info("Circuit breaker '%s' admitting one trial call", self.name)
                return
            logger.warning(
                "Circuit breaker '%s' is OPEN, request blocked (%.1fs until trial)",
                self.name,
                self.reset_timeout - elapsed,
            )
            raise BreakerOpenError(self.status())

        if self._state is BreakerState.HALF_OPEN:
            logger.warning(
                "Circuit breaker '%s' trial call in flight, request blocked",
                self.name,
            )
            raise BreakerOpenError(self.status())

    def _record_success(self) -> None:
        self._consecutive_failures = 0
        if self._state is not BreakerState.CLOSED:
            self._opened_at = None
            self._transition(BreakerState.CLOSED)

    def _record_failure(self, exc: BaseException) -> None:
        self._consecutive_failures += 1
        logger.warning(
            "Circuit breaker '%s' failure %d/%d: %s",
            self.name,
            self._consecutive_failures,
            self.failure_threshold,
            type(exc).__name__,
        )
        if (
            self._state is BreakerState.HALF_OPEN
            or self._consecutive_failures >= self.failure_threshold
        ):
            self._opened_at = self._clock()
            self._transition(BreakerState.OPEN)

    def _transition(self, new_state: BreakerState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state is new_state:
            return

        log = logger.error if new_state is BreakerState.OPEN else logger.info
        log(
            "Circuit breaker '%s': %s -> %s (failures=%d)",
            self.name,
            old_state.value,
            new_state.value,
            self._consecutive_failures,
        )

        event = CircuitStateChanged(
            breaker=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            consecutive_failures=self._consecutive_failures,
            timestamp=datetime.now(timezone.utc),
        )
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Circuit breaker listener failed")
