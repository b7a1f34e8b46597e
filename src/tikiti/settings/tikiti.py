"""Capacity, check-in and scanner settings."""

from decouple import config

# Ledger
LEDGER_RETRY_ATTEMPTS = config("LEDGER_RETRY_ATTEMPTS", default=3, cast=int)

# Archiving
ARCHIVE_BUFFER_HOURS = config("ARCHIVE_BUFFER_HOURS", default=24, cast=int)

# Scanner (device side)
SCANNER_POLL_INTERVAL_MS = config("SCANNER_POLL_INTERVAL_MS", default=500, cast=int)
SCANNER_REQUEST_TIMEOUT_SECONDS = config("SCANNER_REQUEST_TIMEOUT_SECONDS", default=5.0, cast=float)
SCANNER_MAX_ATTEMPTS = config("SCANNER_MAX_ATTEMPTS", default=3, cast=int)
SCANNER_REPEAT_COOLDOWN_SECONDS = config("SCANNER_REPEAT_COOLDOWN_SECONDS", default=3.0, cast=float)
SCANNER_CAMERA_INDEX = config("SCANNER_CAMERA_INDEX", default=0, cast=int)
SCANNER_API_URL = config("SCANNER_API_URL", default="http://localhost:8000")
SCANNER_API_TOKEN = config("SCANNER_API_TOKEN", default="")
