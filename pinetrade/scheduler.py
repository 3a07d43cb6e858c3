"""BatchScheduler — one evaluation-and-execution pass over every subscriber.

A pass walks eligible users → their active strategies → the timeframes
both the strategy allows and the user selected.  Each work item fetches
candles and price, evaluates the strategy and, when a signal fires and no
trade exists yet for the current candle, reserves a credit, places the
order and records the trade (refunding the credit if the order fails).

Users are processed concurrently up to ``max_parallel_users``; the
strategies and timeframes of a single user run sequentially.  Nothing
raised inside a work item escapes :meth:`BatchScheduler.run_pass`.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pinetrade.config import Config
from pinetrade.exchange.base import MarketDataGateway, OrderGateway
from pinetrade.exchange.models import Candle, ExchangeCredentials, OrderRequest
from pinetrade.repos.strategy_repo import Strategy, StrategyRepo
from pinetrade.repos.trade_repo import TradeRepo
from pinetrade.repos.user_repo import UserRepo, UserTradingState
from pinetrade.risk.position_sizer import FixedNotionalSizer, PositionSizer
from pinetrade.strategy.evaluator import evaluate_signal
from pinetrade.strategy.models import Signal, StrategyConfig
from pinetrade.strategy.parser import parse_strategy
from pinetrade.strategy.timeframes import (
    eligible_timeframes,
    ms_to_datetime,
    to_exchange_interval,
)

logger = logging.getLogger("pinetrade.scheduler")

EXECUTED = "EXECUTED"
SKIPPED = "SKIPPED"
FAILED = "FAILED"
ERROR = "ERROR"

# Trade inserts run after the exchange answered, so they are retried
_PERSIST_ATTEMPTS = 3
_PERSIST_RETRY_DELAY = 0.5  # seconds, grows linearly


@dataclass(frozen=True)
class Outcome:
    """What happened to one work item in a pass."""

    user_id: str
    strategy: str
    strategy_id: str
    status: str  # EXECUTED | SKIPPED | FAILED | ERROR
    timeframe: Optional[str] = None
    signal: Optional[str] = None
    price: Optional[float] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    order_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "script": self.strategy,
            "scriptId": self.strategy_id,
            "status": self.status,
            **{
                k: v for k, v in {
                    "timeframe": self.timeframe,
                    "signal": self.signal,
                    "price": self.price,
                    "reason": self.reason,
                    "error": self.error,
                    "orderId": self.order_id,
                }.items()
                if v is not None
            },
        }


@dataclass
class PassReport:
    """Per-pass observability report."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    users_evaluated: int = 0
    load_error: Optional[str] = None
    results: list[Outcome] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        tally = Counter(o.status for o in self.results)
        return {s: tally.get(s, 0) for s in (EXECUTED, SKIPPED, FAILED, ERROR)}

    @property
    def message(self) -> str:
        if self.load_error:
            return f"User lookup failed: {self.load_error}"
        if self.users_evaluated == 0:
            return "No active bots found"
        return "Evaluation complete"

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "usersEvaluated": self.users_evaluated,
            "counts": self.counts,
            "results": [o.to_dict() for o in self.results],
        }


def _describe(exc: BaseException) -> str:
    """Human-readable error text, never empty."""
    if isinstance(exc, asyncio.TimeoutError):
        return "Exchange request timed out"
    return str(exc) or type(exc).__name__


class BatchScheduler:
    """Runs batch passes against injected repositories and gateways.

    Args:
        config: Application configuration.
        users: Profile / credit repository.
        strategies: Strategy repository.
        trades: Trade repository (also the idempotency store).
        market_data: Read-only market data gateway.
        orders: Signed order gateway.
        sizer: Position sizing policy.  Defaults to a fixed notional of
               ``config.order_notional_usdt`` per order.
    """

    def __init__(
        self,
        config: Config,
        users: UserRepo,
        strategies: StrategyRepo,
        trades: TradeRepo,
        market_data: MarketDataGateway,
        orders: OrderGateway,
        sizer: Optional[PositionSizer] = None,
    ) -> None:
        self._config = config
        self._users = users
        self._strategies = strategies
        self._trades = trades
        self._market_data = market_data
        self._orders = orders
        self._sizer = sizer or FixedNotionalSizer(config.order_notional_usdt)
        self._running: bool = False
        self._pass_count: int = 0

    @property
    def pass_count(self) -> int:
        return self._pass_count

    # ── Gateway deadline ─────────────────────────────────────────────────

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        """Await a gateway call under the per-call deadline."""
        timeout = self._config.gateway_timeout_seconds
        if timeout and timeout > 0:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        return await awaitable

    async def _market_snapshot(
        self, symbol: str, timeframe: str,
    ) -> tuple[list[Candle], float]:
        interval = to_exchange_interval(timeframe)
        candles = await self._call(
            self._market_data.fetch_candles(
                symbol, interval, limit=self._config.candle_limit,
            )
        )
        price = await self._call(self._market_data.get_price(symbol))
        return candles, price

    # ── Pass ─────────────────────────────────────────────────────────────

    async def run_pass(self, now: Optional[datetime] = None) -> PassReport:
        """Execute one batch pass and return its report.

        Args:
            now: Wall-clock time used for trade timestamps.  Defaults to
                 ``datetime.now(UTC)``; accepting it keeps passes testable.
        """
        started = datetime.now(timezone.utc)
        report = PassReport(started_at=started)
        self._pass_count += 1

        try:
            users = self._users.list_eligible()
        except Exception as exc:
            logger.error("Pass %d: could not load users: %s", self._pass_count, exc)
            report.load_error = _describe(exc)
            report.finished_at = datetime.now(timezone.utc)
            return report

        report.users_evaluated = len(users)
        if not users:
            logger.info("Pass %d: no active bots found.", self._pass_count)
            report.finished_at = datetime.now(timezone.utc)
            return report

        semaphore = asyncio.Semaphore(max(1, self._config.max_parallel_users))

        async def _bounded(user: UserTradingState) -> list[Outcome]:
            async with semaphore:
                return await self._run_user(user, now)

        per_user = await asyncio.gather(
            *(_bounded(u) for u in users), return_exceptions=True,
        )
        for user, outcome in zip(users, per_user):
            if isinstance(outcome, BaseException):
                # _run_user already contains every per-strategy failure;
                # reaching here means the user-level lookups failed.
                logger.error("User %s aborted: %s", user.user_id, outcome)
                report.results.append(
                    Outcome(
                        user_id=user.user_id,
                        strategy="*",
                        strategy_id="*",
                        status=ERROR,
                        error=_describe(outcome),
                    )
                )
            else:
                report.results.extend(outcome)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Pass %d complete: %d user(s), %s",
            self._pass_count, len(users), report.counts,
        )
        return report

    async def _run_user(
        self, user: UserTradingState, now: Optional[datetime],
    ) -> list[Outcome]:
        strategies = self._strategies.list_active(user.user_id)
        if not strategies:
            return []

        credentials = self._users.get_credentials(user.user_id)
        if credentials is None:
            logger.info("User %s has no active exchange keys — skipped.", user.user_id)
            return []

        outcomes: list[Outcome] = []
        for strategy in strategies:
            try:
                outcomes.extend(
                    await self._run_strategy(user, credentials, strategy, now)
                )
            except Exception as exc:
                logger.exception(
                    "Strategy %s (%s) failed for user %s",
                    strategy.name, strategy.id, user.user_id,
                )
                outcomes.append(
                    Outcome(
                        user_id=user.user_id,
                        strategy=strategy.name,
                        strategy_id=strategy.id,
                        status=ERROR,
                        error=_describe(exc),
                    )
                )
        return outcomes

    async def _run_strategy(
        self,
        user: UserTradingState,
        credentials: ExchangeCredentials,
        strategy: Strategy,
        now: Optional[datetime],
    ) -> list[Outcome]:
        config = parse_strategy(strategy.script_content)
        outcomes: list[Outcome] = []

        for timeframe in eligible_timeframes(
            strategy.allowed_timeframes, user.selected_timeframes,
        ):
            candles, price = await self._market_snapshot(strategy.symbol, timeframe)
            signal = evaluate_signal(config, candles, price)
            if not signal.fired:
                continue

            logger.info(
                "Signal %s for %s %s [%s] user=%s: %s",
                signal.type.value, strategy.symbol, timeframe,
                strategy.name, user.user_id, signal.reason,
            )
            outcomes.append(
                await self._act_on_signal(
                    user, credentials, strategy, timeframe, signal,
                    candle_open=ms_to_datetime(candles[-1].open_time),
                    now=now,
                )
            )
        return outcomes

    # ── Execution ────────────────────────────────────────────────────────

    async def _record_trade(self, **fields: Any) -> Optional[str]:
        """Insert a trade row, retrying transient database errors.

        Returns ``None`` once the row is written, otherwise the last
        error text.  Never raises: by the time a trade is recorded the
        exchange has already answered.
        """
        error: Optional[str] = None
        for attempt in range(1, _PERSIST_ATTEMPTS + 1):
            try:
                self._trades.insert_trade(**fields)
                return None
            except Exception as exc:
                error = _describe(exc)
                logger.warning(
                    "Trade insert for %s %s failed (attempt %d/%d): %s",
                    fields.get("symbol"), fields.get("timeframe"),
                    attempt, _PERSIST_ATTEMPTS, error,
                )
                if attempt < _PERSIST_ATTEMPTS:
                    await asyncio.sleep(_PERSIST_RETRY_DELAY * attempt)
        return error

    async def _act_on_signal(
        self,
        user: UserTradingState,
        credentials: ExchangeCredentials,
        strategy: Strategy,
        timeframe: str,
        signal: Signal,
        candle_open: datetime,
        now: Optional[datetime],
    ) -> Outcome:
        """Duplicate guard → candle claim → credit reservation → order → record."""
        base = dict(
            user_id=user.user_id,
            strategy=strategy.name,
            strategy_id=strategy.id,
            timeframe=timeframe,
            signal=signal.type.value,
        )
        slot = (user.user_id, strategy.symbol, timeframe, candle_open)

        # 1 ── One trade per user/symbol/timeframe per candle.  The claim is
        # durable before the first await, so overlapping passes lose here.
        if self._trades.exists_since(*slot) or not self._trades.claim_candle(*slot):
            return Outcome(
                **base, status=SKIPPED, reason="Duplicate signal on same candle",
            )

        # 2 ── Reserve a credit (conditional decrement)
        reservation = self._users.reserve_credit(user.user_id)
        if reservation is None:
            self._trades.release_candle(*slot)
            return Outcome(**base, status=SKIPPED, reason="No credits remaining")

        # 3 ── Place the entry order; any failure refunds the credit
        request: Optional[OrderRequest] = None
        try:
            quantity = self._sizer.quantity(signal.price)
            request = OrderRequest(
                symbol=strategy.symbol,
                side=signal.type.value,
                quantity=quantity,
            )
            response = await self._call(
                self._orders.place_order(credentials, request)
            )
        except Exception as exc:
            error = _describe(exc)
            refunded = True
            try:
                self._users.refund_credit(reservation)
            except Exception as refund_exc:
                refunded = False
                error = f"{error}; credit refund failed: {_describe(refund_exc)}"
                logger.error(
                    "Credit refund for user %s failed after order error: %s",
                    user.user_id, _describe(refund_exc),
                )
            logger.warning(
                "Order for %s %s failed for user %s (credit %s): %s",
                strategy.symbol, timeframe, user.user_id,
                "refunded" if refunded else "still locked", error,
            )
            await self._record_trade(
                user_id=user.user_id,
                strategy_id=strategy.id,
                symbol=strategy.symbol,
                timeframe=timeframe,
                signal_type=signal.type.value,
                status="FAILED",
                created_at=now or datetime.now(timezone.utc),
                quantity=request.quantity if request else None,
                credit_locked=not refunded,
                credit_consumed=False,
                error_message=error,
            )
            return Outcome(**base, status=FAILED, error=error)

        # 4 ── Record the open trade
        opened_at = now or datetime.now(timezone.utc)
        entry_price = response.avg_price or signal.price
        record_error = await self._record_trade(
            user_id=user.user_id,
            strategy_id=strategy.id,
            symbol=strategy.symbol,
            timeframe=timeframe,
            signal_type=signal.type.value,
            status="OPEN",
            created_at=opened_at,
            entry_price=entry_price,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            quantity=request.quantity,
            order_id=response.order_id,
            credit_locked=True,
            credit_consumed=True,
            opened_at=opened_at,
        )
        if record_error is not None:
            # The position exists on the exchange; this line is the record.
            logger.error(
                "UNRECORDED POSITION order=%s user=%s %s %s %s qty=%s "
                "entry=%s sl=%s tp=%s: %s",
                response.order_id, user.user_id, signal.type.value,
                strategy.symbol, timeframe, request.quantity,
                entry_price, signal.stop_loss, signal.take_profit, record_error,
            )

        # 5 ── Dependent stop / target orders never fail the trade
        if self._config.place_protective_orders:
            try:
                await self._call(
                    self._orders.place_protective_orders(
                        credentials, request, signal.stop_loss, signal.take_profit,
                    )
                )
            except Exception as exc:
                logger.warning(
                    "Protective orders for %s (order %s) failed: %s",
                    strategy.symbol, response.order_id, _describe(exc),
                )

        return Outcome(
            **base,
            status=EXECUTED,
            price=signal.price,
            reason=signal.reason,
            order_id=response.order_id,
            error=(
                f"Trade not recorded: {record_error}" if record_error else None
            ),
        )

    # ── Single-strategy dry run ──────────────────────────────────────────

    async def evaluate_strategy(
        self,
        user_id: str,
        strategy_id: str,
        timeframe: str = "1h",
    ) -> dict:
        """Evaluate one caller-owned strategy without trading.

        Raises:
            LookupError: The strategy doesn't exist or isn't owned by
                *user_id*.
        """
        strategy = self._strategies.get_owned(strategy_id, user_id)
        if strategy is None:
            raise LookupError("Script not found")

        config: StrategyConfig = parse_strategy(strategy.script_content)
        candles, price = await self._market_snapshot(strategy.symbol, timeframe)
        signal = evaluate_signal(config, candles, price)
        return {
            "script": strategy.name,
            "symbol": strategy.symbol,
            "timeframe": timeframe,
            "strategy": config.to_dict(),
            "signal": signal.to_dict(),
            "currentPrice": price,
            "lastCandle": candles[-1].to_dict() if candles else None,
        }

    # ── Timer loop ───────────────────────────────────────────────────────

    async def run_forever(
        self,
        interval: Optional[int] = None,
        max_passes: int = 0,
        on_report: Optional[Callable[[PassReport], None]] = None,
    ) -> list[PassReport]:
        """Run passes on a fixed interval until :meth:`stop` is called.

        Args:
            interval: Seconds between pass starts. Defaults to
                      ``config.pass_interval_seconds``.
            max_passes: Stop after this many passes (0 = unlimited).
            on_report: Called with each report as soon as its pass ends.

        Returns:
            The reports of a bounded run (``max_passes > 0``).  Unbounded
            runs keep nothing and return an empty list; use *on_report*.
        """
        if interval is None:
            interval = self._config.pass_interval_seconds
        self._running = True
        reports: list[PassReport] = []
        passes = 0

        while self._running:
            passes += 1
            try:
                report = await self.run_pass()
                if max_passes > 0:
                    reports.append(report)
                if on_report is not None:
                    on_report(report)
            except Exception as exc:  # pragma: no cover
                logger.error("Pass %d crashed: %s", passes, exc)

            if max_passes > 0 and passes >= max_passes:
                break

            # Interruptible sleep, checks _running every second
            for _ in range(interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        return reports

    def stop(self) -> None:
        """Signal the loop to stop after the current pass."""
        self._running = False
