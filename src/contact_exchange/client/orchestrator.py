"""Device-side exchange state machine.

One ``start_exchange`` call drives a single attempt: it opens a server
session, then runs a motion loop (hits) and a polling loop (status) side by
side under one timeout. Whichever path observes a match first claims it,
fetches the counterpart profile, and resolves the attempt. Every terminal
transition goes through ``_resolve`` so an attempt resolves at most once.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from contact_exchange.adapters.exchange_client import ExchangeApi
from contact_exchange.client.motion import MotionSource
from contact_exchange.domain.errors import MotionPermissionError, SessionExpiredError
from contact_exchange.domain.exchange import SharingCategory

logger = logging.getLogger(__name__)


class ExchangeStatus(str, Enum):
    """Observable phase of an exchange attempt."""

    IDLE = "idle"
    WAITING_FOR_BUMP = "waiting-for-bump"
    PROCESSING = "processing"
    MATCHED = "matched"
    QR_SCAN_PENDING = "qr-scan-pending"
    QR_SCAN_MATCHED = "qr-scan-matched"
    TIMEOUT = "timeout"
    ERROR = "error"


TERMINAL_STATUSES = frozenset(
    {
        ExchangeStatus.MATCHED,
        ExchangeStatus.QR_SCAN_MATCHED,
        ExchangeStatus.TIMEOUT,
        ExchangeStatus.ERROR,
    }
)


@dataclass(frozen=True)
class ExchangeMatch:
    """A resolved match and the counterpart profile it released."""

    token: str
    you_are: str
    profile: dict[str, object]


@dataclass(frozen=True)
class ExchangeState:
    status: ExchangeStatus = ExchangeStatus.IDLE
    session_id: str | None = None
    token: str | None = None
    match: ExchangeMatch | None = None
    error: str | None = None
    motion_available: bool = True


@dataclass(frozen=True)
class ExchangeTimings:
    """Client timing constants, in seconds unless noted."""

    bump_timeout: float = 20.0
    extended_timeout: float = 60.0
    poll_interval: float = 1.0
    hit_cooldown_ms: int = 500
    max_consecutive_poll_failures: int = 5


def generate_session_id() -> str:
    return uuid.uuid4().hex


def _now_ms() -> int:
    return int(time.time() * 1000)


def _current_task() -> asyncio.Task | None:
    """Return the running task, or None when called outside an event loop."""
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ExchangeOrchestrator:
    """Runs one exchange attempt at a time against the exchange API."""

    def __init__(
        self,
        api: ExchangeApi,
        motion_source: MotionSource,
        timings: ExchangeTimings | None = None,
        on_state_change: Callable[[ExchangeState], None] | None = None,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.api = api
        self.motion_source = motion_source
        self.timings = timings or ExchangeTimings()
        self.on_state_change = on_state_change
        self.clock_ms = clock_ms
        self._state = ExchangeState()
        self._done: asyncio.Event | None = None
        self._background: list[asyncio.Task] = []
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._cancelled = False
        self._timeout_extended = False
        self._match_claimed = False
        self._motion_ended = True
        self._hit_count = 0
        self._last_hit_ms: int | None = None
        self._sharing_category = SharingCategory.ALL

    @property
    def state(self) -> ExchangeState:
        return self._state

    @property
    def deadline(self) -> float | None:
        """Event-loop time at which the current attempt times out."""
        if self._timeout_handle is None:
            return None
        return self._timeout_handle.when()

    @property
    def is_running(self) -> bool:
        return self._done is not None and not self._done.is_set()

    async def start_exchange(
        self,
        sharing_category: SharingCategory = SharingCategory.ALL,
        profile_id: str | None = None,
    ) -> ExchangeState:
        """Run one attempt until it matches, times out, fails, or is disconnected."""
        if self.is_running:
            raise RuntimeError("An exchange is already running")

        self._begin_attempt(sharing_category)
        session_id = generate_session_id()
        self._set_state(ExchangeState(session_id=session_id))

        try:
            try:
                token = await self.api.initiate(session_id, sharing_category, profile_id)
            except Exception:
                logger.exception(
                    "Failed to initiate exchange", extra={"session_id": session_id}
                )
                self._resolve(ExchangeStatus.ERROR, error="Could not start the exchange")
                return self._state

            if self._cancelled:
                return self._state

            self._set_state(
                replace(self._state, status=ExchangeStatus.WAITING_FOR_BUMP, token=token)
            )
            logger.info("Exchange started", extra={"session_id": session_id})
            self.motion_source.start_session()
            self._motion_ended = False
            self._background = [
                asyncio.create_task(self._motion_loop()),
                asyncio.create_task(self._poll_loop()),
            ]
            self._arm_timeout(self.timings.bump_timeout)
            await self._done.wait()
        finally:
            if self.is_running:
                self.disconnect()
            await self._drain()
        return self._state

    def disconnect(self) -> None:
        """Abandon the current attempt. Safe to call repeatedly."""
        self._cancelled = True
        self._clear_timeout()
        self._cancel_background()
        self._end_motion()
        if self._done is not None:
            self._done.set()

    def reset(self) -> None:
        """Disconnect and return to idle."""
        self.disconnect()
        self._set_state(ExchangeState())

    def _begin_attempt(self, sharing_category: SharingCategory) -> None:
        self._done = asyncio.Event()
        self._background = []
        self._cancelled = False
        self._timeout_extended = False
        self._match_claimed = False
        self._motion_ended = True
        self._hit_count = 0
        self._last_hit_ms = None
        self._sharing_category = sharing_category

    def _set_state(self, state: ExchangeState) -> None:
        self._state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _advance(self, status: ExchangeStatus) -> None:
        if self._state.status is status:
            return
        if self.is_running and self._state.status not in TERMINAL_STATUSES:
            self._set_state(replace(self._state, status=status))

    def _resolve(self, status: ExchangeStatus, **changes: object) -> bool:
        """Move to a terminal status unless the attempt already ended."""
        if not self.is_running or self._state.status in TERMINAL_STATUSES:
            return False
        self._clear_timeout()
        self._cancel_background()
        self._end_motion()
        self._done.set()
        self._set_state(replace(self._state, status=status, **changes))
        logger.info(
            "Exchange resolved",
            extra={"session_id": self._state.session_id, "status": status.value},
        )
        return True

    def _arm_timeout(self, seconds: float) -> None:
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(seconds, self._on_timeout)

    def _clear_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _extend_timeout(self) -> None:
        if self._timeout_extended or self._match_claimed or not self.is_running:
            return
        self._timeout_extended = True
        self._clear_timeout()
        self._arm_timeout(self.timings.extended_timeout)
        logger.info(
            "Exchange timeout extended for QR sign-in",
            extra={"session_id": self._state.session_id},
        )

    def _on_timeout(self) -> None:
        self._timeout_handle = None
        if self._match_claimed or not self.is_running:
            return
        self._background.append(asyncio.create_task(self._expire()))

    async def _expire(self) -> None:
        # A match may have formed server-side since the last poll.
        for task in self._background:
            if task is not asyncio.current_task():
                task.cancel()
        self._end_motion()
        try:
            snapshot = await self.api.status(self._state.session_id)
        except Exception:
            logger.exception(
                "Final status check failed", extra={"session_id": self._state.session_id}
            )
            snapshot = None
        if (
            snapshot is not None
            and snapshot.has_match
            and snapshot.token
            and snapshot.you_are
        ):
            await self._claim_match(snapshot.token, snapshot.you_are)
            return
        self._resolve(ExchangeStatus.TIMEOUT, error="No match found")

    def _cancel_background(self) -> None:
        if not self._background:
            return
        current = _current_task()
        for task in self._background:
            if task is not current:
                task.cancel()

    async def _drain(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in self._background if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _end_motion(self) -> None:
        if self._motion_ended:
            return
        self._motion_ended = True
        self.motion_source.end_session()

    async def _claim_match(self, token: str, you_are: str) -> None:
        if self._match_claimed or not self.is_running:
            return
        self._match_claimed = True
        self._clear_timeout()
        self._cancel_background()
        self._end_motion()
        via_qr = self._state.status is ExchangeStatus.QR_SCAN_PENDING
        try:
            profile = await self.api.pair(token, self._state.session_id)
        except Exception:
            logger.exception(
                "Failed to load matched profile",
                extra={"session_id": self._state.session_id},
            )
            self._resolve(ExchangeStatus.ERROR, error="Could not load the matched profile")
            return
        self._resolve(
            ExchangeStatus.QR_SCAN_MATCHED if via_qr else ExchangeStatus.MATCHED,
            match=ExchangeMatch(token=token, you_are=you_are, profile=profile),
            error=None,
        )

    async def _motion_loop(self) -> None:
        while not self._cancelled:
            try:
                sample = await self.motion_source.detect_motion()
            except MotionPermissionError:
                logger.warning(
                    "Motion permission denied, continuing with QR only",
                    extra={"session_id": self._state.session_id},
                )
                if self.is_running:
                    self._set_state(
                        replace(
                            self._state,
                            motion_available=False,
                            error="Motion permission denied",
                        )
                    )
                return
            except Exception:
                logger.exception(
                    "Motion detection failed, continuing with polling only",
                    extra={"session_id": self._state.session_id},
                )
                return
            if not sample.has_motion or self._cancelled:
                return

            now_ms = sample.timestamp if sample.timestamp is not None else self.clock_ms()
            if (
                self._last_hit_ms is not None
                and now_ms - self._last_hit_ms < self.timings.hit_cooldown_ms
            ):
                continue
            self._last_hit_ms = now_ms
            self._hit_count += 1
            if self._state.status is ExchangeStatus.WAITING_FOR_BUMP:
                self._advance(ExchangeStatus.PROCESSING)

            vector_hash = None
            if sample.acceleration is not None:
                vector_hash = self.motion_source.hash_acceleration(sample.acceleration)
            try:
                result = await self.api.submit_hit(
                    session_id=self._state.session_id,
                    ts=now_ms,
                    magnitude=sample.magnitude,
                    hit_number=self._hit_count,
                    sharing_category=self._sharing_category,
                    vector_hash=vector_hash,
                )
            except SessionExpiredError:
                self._resolve(ExchangeStatus.TIMEOUT, error="Exchange timed out")
                return
            except Exception:
                logger.exception(
                    "Hit submission failed",
                    extra={
                        "session_id": self._state.session_id,
                        "hit_number": self._hit_count,
                    },
                )
                continue
            if result.matched and result.token and result.you_are:
                await self._claim_match(result.token, result.you_are)
                return

    async def _poll_loop(self) -> None:
        failures = 0
        while not self._cancelled:
            await asyncio.sleep(self.timings.poll_interval)
            try:
                snapshot = await self.api.status(self._state.session_id)
            except SessionExpiredError:
                self._resolve(ExchangeStatus.TIMEOUT, error="Exchange timed out")
                return
            except Exception:
                failures += 1
                logger.exception(
                    "Status poll failed",
                    extra={"session_id": self._state.session_id, "failures": failures},
                )
                if failures >= self.timings.max_consecutive_poll_failures:
                    self._resolve(
                        ExchangeStatus.ERROR, error="Lost connection to exchange service"
                    )
                    return
                continue

            failures = 0
            if snapshot.has_match and snapshot.token and snapshot.you_are:
                await self._claim_match(snapshot.token, snapshot.you_are)
                return
            if snapshot.scan_status == "pending_auth":
                self._extend_timeout()
                self._advance(ExchangeStatus.QR_SCAN_PENDING)
