# src/events/management/commands/archive_events.py

import typing as t

from django.conf import settings
from django.core.management.base import BaseCommand

from events.service.archive_service import archive_past_events


class Command(BaseCommand):
    """Archive published events that ended more than a buffer period ago."""

    help = "Archive events whose end time is older than the buffer (default: ARCHIVE_BUFFER_HOURS)"

    def add_arguments(self, parser: t.Any) -> None:
        """Add command arguments.

        Args:
            parser: The argument parser.
        """
        parser.add_argument(
            "--buffer-hours",
            type=int,
            default=settings.ARCHIVE_BUFFER_HOURS,
            help="Hours after an event's end before it is archived",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the events that would be archived without changing anything",
        )

    def handle(self, *args: t.Any, **options: t.Any) -> None:
        """Execute the archive_events command."""
        dry_run = options["dry_run"]
        events = archive_past_events(buffer_hours=options["buffer_hours"], dry_run=dry_run)

        verb = "Would archive" if dry_run else "Archived"
        for event in events:
            self.stdout.write(f"  {event.name} ({event.pk}), ended {event.end:%Y-%m-%d %H:%M}")
        self.stdout.write(self.style.SUCCESS(f"{verb} {len(events)} event(s)."))
