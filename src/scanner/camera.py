"""Capture devices for the door scanner.

A physical camera can only be driven by one scanner at a time; ``CameraLease`` enforces that
within the process and guarantees the device is handed back on every exit path.
"""

import threading
import typing as t

import cv2
import numpy as np
import structlog

logger = structlog.get_logger(__name__)


class DeviceUnavailableError(Exception):
    """Raised when a capture device cannot be opened or is held by another scanner."""


class FrameCaptureError(Exception):
    """Raised when an open device stops delivering frames."""


class Camera(t.Protocol):
    device_id: str

    def open(self) -> None: ...

    def read_code(self) -> str | None:
        """Grab one frame and return the QR text in it, if any. Blocking."""
        ...

    def close(self) -> None: ...


def extract_qr(frame: np.ndarray, detector: cv2.QRCodeDetector | None = None) -> str | None:
    """Decode the first QR code visible in a BGR frame."""
    detector = detector or cv2.QRCodeDetector()
    data, _points, _straight = detector.detectAndDecode(frame)
    return data or None


class OpenCVCamera:
    """A local webcam read through ``cv2.VideoCapture``."""

    def __init__(self, index: int = 0) -> None:
        """Initialize the camera."""
        self.index = index
        self.device_id = f"opencv:{index}"
        self._capture: cv2.VideoCapture | None = None
        self._detector = cv2.QRCodeDetector()

    def open(self) -> None:
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise DeviceUnavailableError(f"Camera {self.index} could not be opened.")
        self._capture = capture

    def read_code(self) -> str | None:
        if self._capture is None:
            raise FrameCaptureError("Camera is not open.")
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise FrameCaptureError(f"Camera {self.index} returned no frame.")
        return extract_qr(frame, self._detector)

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None


_held_devices: set[str] = set()
_held_devices_lock = threading.Lock()


class CameraLease:
    """Exclusive hold on a capture device."""

    def __init__(self, camera: Camera) -> None:
        """Initialize the lease; nothing is acquired yet."""
        self.camera = camera
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Claim and open the device.

        Raises:
            DeviceUnavailableError: another scanner holds the device, or it cannot be opened.
        """
        device_id = self.camera.device_id
        with _held_devices_lock:
            if device_id in _held_devices:
                raise DeviceUnavailableError(f"{device_id} is in use by another scanner.")
            _held_devices.add(device_id)
        try:
            self.camera.open()
        except Exception:
            with _held_devices_lock:
                _held_devices.discard(device_id)
            raise
        self._held = True
        logger.info("camera_acquired", device=device_id)

    def release(self) -> None:
        """Close the device and give it back. Safe to call more than once."""
        if not self._held:
            return
        try:
            self.camera.close()
        finally:
            with _held_devices_lock:
                _held_devices.discard(self.camera.device_id)
            self._held = False
            logger.info("camera_released", device=self.camera.device_id)

    def __enter__(self) -> "CameraLease":
        self.acquire()
        return self

    def __exit__(self, *exc_info: t.Any) -> None:
        self.release()
