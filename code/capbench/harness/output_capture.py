"""Per-scenario output capture.

An OutputCapture is a text stream handed to one scenario. Writes may come from
any thread; they are queued and drained into an in-memory buffer by a
dedicated thread, so a writer never blocks on the consumer. close() enqueues a
sentinel and joins the drain thread, after which getvalue() returns
everything written, in order.
"""

from __future__ import annotations

import io
import queue
import threading

_SENTINEL = object()


class OutputCapture(io.TextIOBase):
    def __init__(self, name: str = ""):
        super().__init__()
        self.name = name
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._buffer = io.StringIO()
        self._thread = threading.Thread(
            target=self._drain, name=f"capbench-output-{name or 'capture'}", daemon=True
        )
        self._thread.start()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _SENTINEL:
                return
            self._buffer.write(item)

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        if self.closed:
            raise ValueError("write to closed OutputCapture")
        if not isinstance(text, str):
            raise TypeError(f"write() argument must be str, not {type(text).__name__}")
        self._queue.put(text)
        return len(text)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        if self.closed:
            return
        self._queue.put(_SENTINEL)
        self._thread.join()
        super().close()

    def getvalue(self) -> str:
        """Return the captured text. Only valid once the capture is closed."""
        if not self.closed:
            raise RuntimeError("OutputCapture must be closed before reading")
        return self._buffer.getvalue()
