"""
Push-only observability channel.

The runner emits four events:

- ``step-start``: ``{"stepId", "kind", "label"}`` before a step executes
- ``run-update``: the full ``RunResult.to_dict()`` after a step finishes
- ``log``: ``{"level", "logger", "message"}`` for every ``flowwright`` log record
- ``preview-frame``: ``{"image": <base64 JPEG>, "timestamp"}`` in debug mode

Delivery is best-effort: a sink that raises never affects the run.
"""

import asyncio
import base64
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from flowwright.driver.base import BrowserDriver

logger = logging.getLogger(__name__)

STEP_START = "step-start"
RUN_UPDATE = "run-update"
LOG = "log"
PREVIEW_FRAME = "preview-frame"


class TelemetrySink:
    """Receives telemetry events. Subclasses override ``emit``."""

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class NullTelemetry(TelemetrySink):
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        pass


class CallbackTelemetry(TelemetrySink):
    """Forwards every event to a callable, e.g. a websocket ``send``."""

    def __init__(self, callback: Callable[[str, Dict[str, Any]], Any]):
        self.callback = callback

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.callback(event, payload)


class RecordingTelemetry(TelemetrySink):
    """Keeps events in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


def safe_emit(sink: TelemetrySink, event: str, payload: Dict[str, Any]) -> None:
    try:
        sink.emit(event, payload)
    except Exception as exc:
        # Not logged through flowwright.* to keep the log forwarder from looping
        logging.getLogger("telemetry").debug("Telemetry sink failed on %s: %s", event, exc)


class TelemetryLogHandler(logging.Handler):
    """Forwards ``flowwright`` log records to a sink as ``log`` events."""

    def __init__(self, sink: TelemetrySink, level: int = logging.INFO):
        super().__init__(level)
        self.sink = sink
        self.addFilter(logging.Filter("flowwright"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except Exception:
            self.handleError(record)
            return
        safe_emit(self.sink, LOG, {
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": message,
            "timestamp": int(record.created * 1000),
        })


class PreviewStreamer:
    """Periodically pushes JPEG screenshots of the page while a run is active."""

    def __init__(self, driver: BrowserDriver, sink: TelemetrySink, interval_ms: int = 300, quality: int = 70):
        self.driver = driver
        self.sink = sink
        self.interval_ms = interval_ms
        self.quality = quality
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._stream())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _stream(self) -> None:
        while True:
            try:
                image = await self.driver.screenshot(image_type="jpeg", quality=self.quality)
                safe_emit(self.sink, PREVIEW_FRAME, {
                    "image": base64.b64encode(image).decode("ascii"),
                    "timestamp": int(time.time() * 1000),
                })
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug("Preview frame skipped: %s", exc)
            await asyncio.sleep(self.interval_ms / 1000)
