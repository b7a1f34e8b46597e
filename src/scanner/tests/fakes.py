import asyncio
import itertools
import time
import typing as t

from scanner.camera import DeviceUnavailableError, FrameCaptureError
from scanner.client import ScanOutcome
from scanner.gateway import CheckInReply

_device_ids = itertools.count()


class FakeCamera:
    """Camera whose field of view is set by the test."""

    def __init__(
        self,
        visible: str | None = None,
        *,
        fail_open: bool = False,
        fail_read: bool = False,
        read_delay: float = 0.0,
    ) -> None:
        self.device_id = f"fake:{next(_device_ids)}"
        self.visible = visible
        self.fail_open = fail_open
        self.fail_read = fail_read
        self.read_delay = read_delay
        self.is_open = False
        self.reads = 0
        self.closes = 0
        self.reading = False
        self.closed_during_read = False

    def open(self) -> None:
        if self.fail_open:
            raise DeviceUnavailableError("no such device")
        self.is_open = True

    def read_code(self) -> str | None:
        self.reads += 1
        self.reading = True
        try:
            if self.read_delay:
                time.sleep(self.read_delay)
            if self.fail_read:
                raise FrameCaptureError("unplugged")
            return self.visible
        finally:
            self.reading = False

    def close(self) -> None:
        if self.reading:
            self.closed_during_read = True
        self.is_open = False
        self.closes += 1


class FakeGateway:
    """Gateway answering every code with a fixed outcome."""

    def __init__(
        self,
        outcome: str = "success",
        *,
        delay: float = 0.0,
        hang_first: int = 0,
        error: Exception | None = None,
    ) -> None:
        self.outcome = outcome
        self.error = error
        self.delay = delay
        self.hang_first = hang_first
        self.calls: list[tuple[str, str]] = []
        self.completed = 0
        self.concurrent = 0
        self.max_concurrent = 0

    async def submit(self, code: str, method: str) -> CheckInReply:
        self.calls.append((code, method))
        self.concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self.concurrent)
        try:
            if self.hang_first > 0:
                self.hang_first -= 1
                await asyncio.sleep(3600)
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
        finally:
            self.concurrent -= 1
        self.completed += 1
        return CheckInReply(outcome=self.outcome, reference="TKT-ABCDEF0123", attendee_name="Ada", quantity=1)

    async def aclose(self) -> None:
        return None


class OutcomeRecorder:
    def __init__(self) -> None:
        self.outcomes: list[ScanOutcome] = []

    def __call__(self, outcome: ScanOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def kinds(self) -> list[str]:
        return [o.kind for o in self.outcomes]


async def wait_until(predicate: t.Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)

