"""
Poll loop that turns adb dumps into live statistics.

The session waits for the target app to start, then on every tick fetches
the gfxinfo (and optionally meminfo / top) dumps, parses them and merges the
resulting samples into the state it owns. Each tick produces an immutable
``SessionSnapshot`` that is handed to the renderer.
"""

import enum
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from frame_metrics import (
    DEFAULT_CAPACITY, HISTOGRAM_THRESHOLDS, JANKY_THRESHOLD_MS,
    DatasetSnapshot, FrameMetrics, FrameSnapshot, RollingDataset,
)
from gfx_parser import (
    normalize_samples, parse_cpu_usage, parse_frame_timings, parse_memory_usage, select_format,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2  # seconds
PROCESS_RETRY_INTERVAL = 0.2  # seconds


class SessionState(enum.Enum):
    WAITING_FOR_TARGET_PROCESS = "waiting_for_target_process"
    POLLING = "polling"


@dataclass
class SessionConfig:
    device_id: str
    package: str
    platform_version: int
    poll_interval: float = POLL_INTERVAL
    process_retry_interval: float = PROCESS_RETRY_INTERVAL
    capacity: int = DEFAULT_CAPACITY
    janky_threshold_ms: float = JANKY_THRESHOLD_MS
    histogram_thresholds: Tuple[float, ...] = HISTOGRAM_THRESHOLDS
    track_resources: bool = True


@dataclass(frozen=True)
class SessionSnapshot:
    device_id: str
    package: str
    platform_version: int
    elapsed_seconds: float
    tick_count: int
    frames: FrameSnapshot
    memory: Optional[DatasetSnapshot] = None
    cpu: Optional[DatasetSnapshot] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "package": self.package,
            "platformVersion": self.platform_version,
            "elapsedSeconds": self.elapsed_seconds,
            "tickCount": self.tick_count,
            "frames": self.frames.to_dict(),
            "memory": self.memory.to_dict() if self.memory else None,
            "cpu": self.cpu.to_dict() if self.cpu else None,
        }


Renderer = Callable[[SessionSnapshot], None]


class PollSession:
    """Owns the per-session metric state and drives the poll loop."""

    def __init__(self, transport, config: SessionConfig, clock: Callable[[], float] = time.monotonic):
        self.transport = transport
        self.config = config
        self.clock = clock
        # Fails fast on unsupported platforms, before any waiting happens.
        self.format = select_format(config.platform_version)
        self.state = SessionState.WAITING_FOR_TARGET_PROCESS
        self.frames = FrameMetrics(config.capacity, config.histogram_thresholds, config.janky_threshold_ms)
        self.memory = RollingDataset(config.capacity) if config.track_resources else None
        self.cpu = RollingDataset(config.capacity) if config.track_resources else None
        self.tick_count = 0
        self.started_at = None
        self._tick_lock = threading.Lock()
        self._data_lock = threading.Lock()
        self._latest = None
        self._executor = ThreadPoolExecutor(max_workers=3) if config.track_resources else None

    # -------------------- Waiting --------------------
    def wait_for_target_process(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """Block until the app is running. Returns False if cancelled first."""
        cancel_event = cancel_event or threading.Event()
        device_id, package = self.config.device_id, self.config.package
        while not cancel_event.is_set():
            if self.transport.fetch_process_presence(device_id, package):
                logger.info("%s is running on %s", package, device_id)
                self.state = SessionState.POLLING
                self.started_at = self.clock()
                return True
            cancel_event.wait(self.config.process_retry_interval)
        logger.info("stopped waiting for %s", package)
        return False

    # -------------------- Fetching --------------------
    def _fetch_frames(self):
        raw = self.transport.fetch_diagnostic_text(self.config.device_id, self.config.package)
        return normalize_samples(parse_frame_timings(raw, self.config.platform_version))

    def _fetch_memory(self):
        raw = self.transport.fetch_memory_text(self.config.device_id, self.config.package)
        return normalize_samples(parse_memory_usage(raw))

    def _fetch_cpu(self):
        pids = self.transport.fetch_process_ids(self.config.device_id, self.config.package)
        if not pids:
            return []
        raw = self.transport.fetch_cpu_text(self.config.device_id, pids)
        return normalize_samples(parse_cpu_usage(raw, pids))

    def _collect(self):
        if self._executor is None:
            return self._fetch_frames(), [], []
        # adb serves each shell invocation on its own stream, so these can overlap.
        future_frames = self._executor.submit(self._fetch_frames)
        future_memory = self._executor.submit(self._fetch_memory)
        future_cpu = self._executor.submit(self._fetch_cpu)
        return future_frames.result(), future_memory.result(), future_cpu.result()

    # -------------------- Ticking --------------------
    def tick(self) -> Optional[SessionSnapshot]:
        """Run one poll cycle.

        Returns None, leaving all state untouched, when the previous tick is
        still in flight. Transport errors propagate to the caller.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("previous tick still running, skipping")
            return None
        try:
            if self.started_at is None:
                self.started_at = self.clock()
            frame_samples, memory_samples, cpu_samples = self._collect()
            if self.frames.update(frame_samples):
                logger.debug("merged %d frames", len(frame_samples))
            if memory_samples:
                self.memory.merge(memory_samples)
            if cpu_samples:
                self.cpu.merge(cpu_samples)
            self.tick_count += 1
            snapshot = self.snapshot()
            with self._data_lock:
                self._latest = snapshot
            return snapshot
        finally:
            self._tick_lock.release()

    def snapshot(self) -> SessionSnapshot:
        started = self.started_at if self.started_at is not None else self.clock()
        return SessionSnapshot(
            device_id=self.config.device_id,
            package=self.config.package,
            platform_version=self.config.platform_version,
            elapsed_seconds=self.clock() - started,
            tick_count=self.tick_count,
            frames=self.frames.snapshot(),
            memory=self.memory.snapshot() if self.memory else None,
            cpu=self.cpu.snapshot() if self.cpu else None,
        )

    def latest_snapshot(self) -> Optional[SessionSnapshot]:
        with self._data_lock:
            return self._latest

    def run(self, renderer: Renderer, stop_event: Optional[threading.Event] = None) -> None:
        """Tick every ``poll_interval`` until ``stop_event`` is set."""
        stop_event = stop_event or threading.Event()
        try:
            while not stop_event.is_set():
                started = self.clock()
                snapshot = self.tick()
                if snapshot is not None:
                    renderer(snapshot)
                remaining = self.config.poll_interval - (self.clock() - started)
                stop_event.wait(max(remaining, 0))
        finally:
            self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
