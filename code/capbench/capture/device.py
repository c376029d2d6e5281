"""Capture device adapter over linuxpy's V4L2 bindings.

The executor only sees the small CaptureDevice surface defined here. Frames
are read from the kernel on a delivery thread and handed to the consumer
through a bounded queue; an empty payload marks a buffer the driver flagged
as errored (a dropped frame). Both sides stop when the shared cancel event is
set.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Protocol

from linuxpy.video.device import BufferFlag, Device, PixelFormat, VideoCapture

from capbench.benchmark.config import BenchmarkConfig, validate_pixel_format
from capbench.benchmark.defaults import get_defaults
from capbench.benchmark.exceptions import DeviceOpenError, SessionStartError
from capbench.utils.logger import get_logger

logger = get_logger(__name__)


PIXEL_FORMATS: Dict[str, PixelFormat] = {
    "MJPEG": PixelFormat.MJPEG,
    "YUYV": PixelFormat.YUYV,
    "H264": PixelFormat.H264,
}

_END = object()


def pixel_format_code(name: str) -> PixelFormat:
    """Map a format name to its V4L2 fourcc, raising UnknownFormatError."""
    return PIXEL_FORMATS[validate_pixel_format(name)]


def pixel_format_name(code: Any) -> str:
    for name, value in PIXEL_FORMATS.items():
        if value == code:
            return name
    return getattr(code, "name", str(code))


@dataclass(frozen=True)
class FormatInfo:
    """Format the driver actually negotiated."""

    width: int
    height: int
    pixel_format: str
    size_image: int = 0
    bytes_per_line: int = 0

    def describe(self) -> str:
        return f"{self.width}x{self.height} {self.pixel_format}"


class CaptureDevice(Protocol):
    device_path: str

    def get_pixel_format(self) -> FormatInfo: ...

    def start(self, cancel: threading.Event) -> None: ...

    def frames(self) -> Iterator[bytes]: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...


class LinuxpyCaptureDevice:
    """CaptureDevice backed by linuxpy's Device/VideoCapture pair."""

    def __init__(
        self,
        device_path: str,
        config: BenchmarkConfig,
        device_factory: Callable[[str], Any] = Device,
        capture_factory: Callable[..., Any] = VideoCapture,
        log: Optional[logging.Logger] = None,
    ):
        self.device_path = device_path
        self.config = config
        self.log = log or logger
        defaults = get_defaults()
        self._poll_interval = defaults.frame_poll_interval_seconds
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=defaults.frame_queue_depth)
        self._cancel: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._delivery_error: Optional[BaseException] = None
        self._streaming = False
        self._closed = False

        try:
            self._device = device_factory(device_path)
            self._device.open()
        except (OSError, ValueError) as exc:
            raise DeviceOpenError(
                f"failed to open device {device_path}: {exc}",
                device_path=device_path,
                stage="open",
                original_error=exc,
            ) from exc

        try:
            self._capture = capture_factory(self._device, config.buffer_count)
            self._capture.set_format(config.width, config.height, pixel_format_code(config.pixel_format))
            self._capture.set_fps(config.fps)
        except (OSError, ValueError) as exc:
            self._device.close()
            raise DeviceOpenError(
                f"failed to configure device {device_path}: {exc}",
                device_path=device_path,
                stage="format",
                original_error=exc,
            ) from exc

    def get_pixel_format(self) -> FormatInfo:
        try:
            fmt = self._capture.get_format()
        except (OSError, ValueError) as exc:
            raise DeviceOpenError(
                f"failed to read format of {self.device_path}: {exc}",
                device_path=self.device_path,
                stage="format",
                original_error=exc,
            ) from exc
        return FormatInfo(
            width=fmt.width,
            height=fmt.height,
            pixel_format=pixel_format_name(fmt.pixel_format),
            size_image=getattr(fmt, "size", 0),
            bytes_per_line=getattr(fmt, "bytes_per_line", 0),
        )

    def start(self, cancel: threading.Event) -> None:
        """Arm the buffers, start streaming and launch the delivery thread."""
        self._cancel = cancel
        try:
            self._capture.open()
        except OSError as exc:
            raise SessionStartError(
                f"failed to start capture on {self.device_path}: {exc}",
                device_path=self.device_path,
                stage="start",
                original_error=exc,
            ) from exc
        self._streaming = True
        self._thread = threading.Thread(target=self._deliver, name="capbench-delivery", daemon=True)
        self._thread.start()

    def _deliver(self) -> None:
        cancel = self._cancel
        try:
            for frame in self._capture:
                if cancel.is_set():
                    break
                if BufferFlag.ERROR in frame.flags:
                    payload = b""
                else:
                    payload = bytes(frame.data)
                if not self._offer(payload):
                    break
        except Exception as exc:
            if not cancel.is_set():
                self._delivery_error = exc
        finally:
            self._offer(_END, force=True)

    def _offer(self, item: Any, force: bool = False) -> bool:
        """Put ``item`` on the queue, giving up once cancelled unless forced."""
        while True:
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return True
            except queue.Full:
                if self._cancel.is_set():
                    if not force:
                        return False
                    # make room for the end marker
                    try:
                        self._queue.get_nowait()
                    except queue.Empty:
                        pass

    def frames(self) -> Iterator[bytes]:
        """Yield payloads until the cancel event is set or delivery ends."""
        if self._cancel is None:
            raise RuntimeError("frames() called before start()")
        cancel = self._cancel
        while not cancel.is_set():
            try:
                item = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            if item is _END:
                if self._delivery_error is not None:
                    self.log.warning("Frame delivery stopped early: %s", self._delivery_error)
                return
            if cancel.is_set():
                return
            yield item

    def stop(self) -> None:
        if not self._streaming:
            return
        self._streaming = False
        if self._cancel is not None:
            self._cancel.set()
        try:
            self._capture.close()
        except OSError as exc:
            self.log.warning("Error stopping capture on %s: %s", self.device_path, exc)
        if self._thread is not None:
            self._thread.join(timeout=get_defaults().generator_stop_timeout_seconds)
            if self._thread.is_alive():
                self.log.warning("Delivery thread for %s did not exit", self.device_path)
            self._thread = None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stop()
        try:
            self._device.close()
        except OSError as exc:
            self.log.warning("Error closing %s: %s", self.device_path, exc)

    def __repr__(self) -> str:
        return f"<LinuxpyCaptureDevice path={self.device_path}, streaming={self._streaming}>"


def open_device(
    device_path: str, config: BenchmarkConfig, log: Optional[logging.Logger] = None
) -> CaptureDevice:
    """Open and configure a capture device for ``config``.

    Adapter warnings go to ``log`` (the scenario logger when orchestrated).

    Raises:
        DeviceOpenError: if the node cannot be opened or the format rejected
    """
    return LinuxpyCaptureDevice(device_path, config, log=log)
