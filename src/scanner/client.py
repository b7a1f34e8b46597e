"""Door scanner control loop.

The client samples the camera on a fixed interval and submits decoded codes to a check-in
gateway, one request at a time. Manual entry goes through the same gateway call, so typed
booking ids and scanned QR codes are judged by the same server code.
"""

import asyncio
import inspect
import time
import typing as t
from dataclasses import dataclass
from enum import StrEnum

import structlog
from django.conf import settings

from .camera import Camera, CameraLease, DeviceUnavailableError
from .gateway import CheckInGateway, CheckInReply, GatewayError, GatewayUnavailableError

logger = structlog.get_logger(__name__)

METHOD_QR = "qr"
METHOD_MANUAL = "manual"


class ScanOutcomeKind(StrEnum):
    SUCCESS = "success"
    ALREADY_CHECKED_IN = "already_checked_in"
    REJECTED = "rejected"
    DEVICE_UNAVAILABLE = "device_unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ScanOutcome:
    kind: ScanOutcomeKind
    code: str | None = None
    reply: CheckInReply | None = None
    detail: str | None = None

    @classmethod
    def from_reply(cls, code: str, reply: CheckInReply) -> "ScanOutcome":
        if reply.outcome == ScanOutcomeKind.SUCCESS:
            kind = ScanOutcomeKind.SUCCESS
        elif reply.outcome == ScanOutcomeKind.ALREADY_CHECKED_IN:
            kind = ScanOutcomeKind.ALREADY_CHECKED_IN
        else:
            kind = ScanOutcomeKind.REJECTED
        return cls(kind=kind, code=code, reply=reply, detail=reply.outcome)


REJECTION_MESSAGES = {
    "event_mismatch": "Ticket is for a different event",
    "booking_not_found": "Unknown ticket",
    "booking_cancelled": "Booking was cancelled",
    "booking_not_confirmed": "Booking is not confirmed (waitlisted)",
    "invalid_payload": "Unreadable code",
}


def render_outcome(outcome: ScanOutcome) -> str:
    """One-line banner for the operator."""
    match outcome.kind, outcome.reply:
        case ScanOutcomeKind.SUCCESS, CheckInReply() as reply:
            party = f" x{reply.quantity}" if reply.quantity and reply.quantity > 1 else ""
            return f"ADMIT: {reply.attendee_name} ({reply.reference}){party}"
        case ScanOutcomeKind.ALREADY_CHECKED_IN, CheckInReply() as reply:
            since = f" at {reply.checked_in_at:%H:%M:%S}" if reply.checked_in_at else ""
            return f"ALREADY CHECKED IN{since}: {reply.attendee_name} ({reply.reference})"
        case ScanOutcomeKind.DEVICE_UNAVAILABLE, _:
            return "CAMERA UNAVAILABLE: use manual entry"
        case ScanOutcomeKind.UNKNOWN, _:
            return "NO ANSWER: re-check this ticket"
        case _:
            message = REJECTION_MESSAGES.get(outcome.detail or "", outcome.detail or "Rejected")
            return f"REJECTED: {message}"


OutcomeCallback = t.Callable[[ScanOutcome], t.Awaitable[None] | None]


class ScannerClient:
    """Polls a camera and submits check-ins through a gateway.

    Only one check-in is ever in flight. ``stop()`` halts polling and releases the camera but
    lets an in-flight check-in finish; its result is then dropped instead of being reported.

    Usage:
        async with ScannerClient(gateway, OpenCVCamera(0), on_outcome=show) as scanner:
            await scanner.submit_manual("TKT-3F2A19B07C")
    """

    def __init__(
        self,
        gateway: CheckInGateway,
        camera: Camera | None = None,
        *,
        on_outcome: OutcomeCallback | None = None,
        poll_interval: float | None = None,
        request_timeout: float | None = None,
        max_attempts: int | None = None,
        repeat_cooldown: float | None = None,
        clock: t.Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the client; nothing runs until ``start()``."""
        self.gateway = gateway
        self.camera = camera
        self.on_outcome = on_outcome
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.SCANNER_POLL_INTERVAL_MS / 1000
        )
        self.request_timeout = request_timeout or settings.SCANNER_REQUEST_TIMEOUT_SECONDS
        self.max_attempts = max_attempts or settings.SCANNER_MAX_ATTEMPTS
        self.repeat_cooldown = (
            repeat_cooldown if repeat_cooldown is not None else settings.SCANNER_REPEAT_COOLDOWN_SECONDS
        )
        self._clock = clock
        self._in_flight = asyncio.Lock()
        self._poll_task: asyncio.Task[None] | None = None
        self._submissions: set[asyncio.Task[None]] = set()
        self._lease: CameraLease | None = None
        self._running = False
        # Bumped on every start/stop; a submission finishing under a newer generation is stale.
        self._generation = 0
        self._last_code: str | None = None
        self._last_seen = 0.0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def camera_active(self) -> bool:
        return self._lease is not None and self._lease.held

    async def __aenter__(self) -> "ScannerClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: t.Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Acquire the camera and start polling; without a camera only manual entry works."""
        if self._running:
            return
        self._running = True
        self._generation += 1
        if self.camera is None:
            logger.info("scanner_started", mode="manual")
            return

        lease = CameraLease(self.camera)
        try:
            await asyncio.to_thread(lease.acquire)
        except DeviceUnavailableError as exc:
            logger.warning("scanner_device_unavailable", device=self.camera.device_id, error=str(exc))
            await self._emit(ScanOutcome(kind=ScanOutcomeKind.DEVICE_UNAVAILABLE, detail=str(exc)))
            return

        self._lease = lease
        self._poll_task = asyncio.create_task(self._poll(lease), name=f"scanner-poll-{self.camera.device_id}")
        logger.info("scanner_started", mode="camera", device=self.camera.device_id)

    async def stop(self) -> None:
        """Stop polling and release the camera. In-flight check-ins are left to complete."""
        if not self._running:
            return
        self._running = False
        self._generation += 1
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        lease, self._lease = self._lease, None
        if lease is not None:
            # The poll task may have been cancelled before it ever ran.
            await asyncio.to_thread(lease.release)
        logger.info("scanner_stopped", pending_submissions=len(self._submissions))

    async def submit_manual(self, text: str) -> ScanOutcome:
        """Check in a typed booking id or reference.

        Waits for any in-flight check-in to finish first.
        """
        generation = self._generation
        async with self._in_flight:
            outcome = await self._submit(text.strip(), METHOD_MANUAL)
        if generation == self._generation:
            await self._emit(outcome)
        return outcome

    async def wait_idle(self) -> None:
        """Wait until no check-in is in flight."""
        while self._submissions:
            await asyncio.gather(*self._submissions, return_exceptions=True)

    async def _poll(self, lease: CameraLease) -> None:
        read: asyncio.Future[str | None] | None = None
        try:
            while True:
                if not self._in_flight.locked():
                    read = asyncio.ensure_future(asyncio.to_thread(lease.camera.read_code))
                    code = await asyncio.shield(read)
                    read = None
                    if code and not self._is_repeat(code):
                        await self._in_flight.acquire()
                        self._spawn_submission(code)
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            read = None
            logger.exception("scanner_capture_failed", device=lease.camera.device_id)
            await self._emit(ScanOutcome(kind=ScanOutcomeKind.DEVICE_UNAVAILABLE, detail=str(exc)))
        finally:
            if read is not None:
                # A worker thread cannot be interrupted; the device is closed only once its read returns.
                await asyncio.wait([read])
                if not read.cancelled() and read.exception() is not None:
                    logger.warning("scanner_read_failed_while_stopping", device=lease.camera.device_id)
            await asyncio.to_thread(lease.release)

    def _is_repeat(self, code: str) -> bool:
        now = self._clock()
        repeat = code == self._last_code and now - self._last_seen < self.repeat_cooldown
        self._last_code = code
        self._last_seen = now
        return repeat

    def _spawn_submission(self, code: str) -> None:
        """Run a camera check-in outside the poll task so stopping the loop cannot cancel it."""
        generation = self._generation

        async def run() -> None:
            try:
                outcome = await self._submit(code, METHOD_QR)
            finally:
                self._in_flight.release()
                # The code stays in view while the request runs; restart its cooldown.
                if self._last_code == code:
                    self._last_seen = self._clock()
            if generation != self._generation:
                logger.info("scan_result_discarded", code=code, kind=outcome.kind)
                return
            await self._emit(outcome)

        task = asyncio.create_task(run(), name="scanner-submission")
        self._submissions.add(task)
        task.add_done_callback(self._submissions.discard)

    async def _submit(self, code: str, method: str) -> ScanOutcome:
        """Send one code, retrying timeouts; gives up with ``UNKNOWN``."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                reply = await asyncio.wait_for(self.gateway.submit(code, method), timeout=self.request_timeout)
            except (TimeoutError, GatewayUnavailableError) as exc:
                logger.warning("check_in_attempt_failed", attempt=attempt, method=method, error=str(exc) or "timeout")
                continue
            except GatewayError as exc:
                return ScanOutcome(kind=ScanOutcomeKind.UNKNOWN, code=code, detail=str(exc))
            except Exception as exc:
                logger.exception("check_in_attempt_crashed", attempt=attempt, method=method)
                return ScanOutcome(kind=ScanOutcomeKind.UNKNOWN, code=code, detail=str(exc) or type(exc).__name__)
            outcome = ScanOutcome.from_reply(code, reply)
            logger.info("check_in_answered", method=method, kind=outcome.kind, attempts=attempt)
            return outcome

        logger.warning("check_in_gave_up", method=method, attempts=self.max_attempts)
        return ScanOutcome(kind=ScanOutcomeKind.UNKNOWN, code=code, detail="no_response")

    async def _emit(self, outcome: ScanOutcome) -> None:
        if self.on_outcome is None:
            return
        result = self.on_outcome(outcome)
        if inspect.isawaitable(result):
            await result
