# src/scanner/management/commands/run_scanner.py

import asyncio
import signal
import sys
import typing as t
from argparse import ArgumentParser
from uuid import UUID

import structlog
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from scanner.camera import OpenCVCamera
from scanner.client import ScannerClient, ScanOutcome, render_outcome
from scanner.gateway import CheckInGateway, HttpCheckInGateway, LocalCheckInGateway

logger = structlog.get_logger(__name__)


class Command(BaseCommand):
    help = "Runs a door scanner: camera polling plus manual entry from stdin."

    def add_arguments(self, parser: ArgumentParser) -> None:  # noqa: D102
        parser.add_argument("event_id", type=UUID, help="The event to check attendees in to")
        parser.add_argument("--camera", type=int, default=settings.SCANNER_CAMERA_INDEX, help="Camera index")
        parser.add_argument("--no-camera", action="store_true", help="Manual entry only")
        parser.add_argument(
            "--local",
            metavar="USERNAME",
            default=None,
            help="Check in through the local database as this staff user instead of the HTTP API",
        )
        parser.add_argument("--api-url", default=settings.SCANNER_API_URL, help="Base URL of the API")
        parser.add_argument("--token", default=settings.SCANNER_API_TOKEN, help="Staff access token for the API")

    def handle(self, *args: t.Any, **options: t.Any) -> None:  # pragma: no cover
        """Build the gateway and run the scanner until EOF or a signal."""
        event_id: UUID = options["event_id"]
        gateway = self.get_gateway(event_id, options)
        camera = None if options["no_camera"] else OpenCVCamera(options["camera"])

        try:
            asyncio.run(self.run(gateway, camera))
        except KeyboardInterrupt:
            logger.info("scanner_stopped_manually")

    def get_gateway(self, event_id: UUID, options: dict[str, t.Any]) -> CheckInGateway:
        if options["local"]:
            User = get_user_model()
            actor = User.objects.filter(**{User.USERNAME_FIELD: options["local"]}).first()
            if actor is None:
                raise CommandError(f"User {options['local']} does not exist.")
            return LocalCheckInGateway(event_id, actor=actor)
        if not options["token"]:
            raise CommandError("An API token is required (--token or SCANNER_API_TOKEN).")
        return HttpCheckInGateway(options["api_url"], event_id, options["token"])

    async def run(self, gateway: CheckInGateway, camera: OpenCVCamera | None) -> None:  # pragma: no cover
        """Run the scanner loop."""
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        # Non-blocking stdin, so no executor thread outlives a shutdown.
        stdin = asyncio.StreamReader()
        transport, _ = await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(stdin), sys.stdin)
        submissions: set[asyncio.Task[ScanOutcome]] = set()

        def show(outcome: ScanOutcome) -> None:
            self.stdout.write(render_outcome(outcome))

        try:
            async with ScannerClient(gateway, camera, on_outcome=show) as scanner:
                self.stdout.write("Scanner ready. Type a booking reference and press enter for manual check-in.")
                manual = asyncio.create_task(feed_manual_entries(scanner, stdin, submissions))
                manual.add_done_callback(lambda _task: stop_event.set())
                await stop_event.wait()
                manual.cancel()
                await asyncio.gather(manual, *submissions, return_exceptions=True)
            await scanner.wait_idle()
        finally:
            transport.close()
            await gateway.aclose()


async def feed_manual_entries(
    scanner: ScannerClient,
    lines: asyncio.StreamReader,
    submissions: set[asyncio.Task[ScanOutcome]],
) -> None:
    """Submit each typed line until EOF.

    Cancelling the reader leaves a check-in that was already sent running; it stays in
    ``submissions`` until it completes.
    """
    while line := await lines.readline():
        text = line.decode(errors="replace").strip()
        if not text:
            continue
        submission = asyncio.create_task(scanner.submit_manual(text))
        submissions.add(submission)
        submission.add_done_callback(submissions.discard)
        await asyncio.shield(submission)
