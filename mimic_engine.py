"""
Mimic V1 — Tracking Scheduler & Engine
======================================
Real-time control loop that turns frames into tracking signals.

TrackingScheduler (single tracking stream):
  - Slow cadence: full-frame detection when there is no cached box or
    the last detection is older than the redetect interval (500 ms).
  - Fast cadence: landmarks on the cached box for every processed frame,
    then orientation and expressions from those landmarks.
  - One inference in flight at most. A request arriving while busy is
    dropped and returns None. The in-flight slot is released on every
    exit path.
  - Inference errors are logged and reported as None; cached box,
    detection time and calibration are left as they were.

MimicEngine (async wrapper):
  1. Capture Thread: reads validated frames from MimicCamera
  2. Inference Thread: runs the scheduler on the newest frame
  3. Host / render loop: polls get_latest_result() / current_signals()
     every display frame and never blocks

Frames travel through a one-slot mailbox that drops the oldest frame,
so a slow inference never builds a backlog.

Developer: Mimic Team
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import numpy as np
import psutil

from mimic_types import (
    Box,
    EngineResult,
    ExpressionWeights,
    Orientation,
    TrackingResult,
)
from mimic_camera import MimicCamera
from mimic_face_pipeline import FaceTrackingPipeline, calculate_face_orientation
from mimic_expressions import ExpressionSession
from mimic_logger import get_logger
from mimic_utils_core import (
    CONFIG,
    DETECT_INTERVAL_MS,
    HeadRotationFollower,
    merge_config,
    setup_logger,
)
from mimic_utils.landmark_projection import NUM_LANDMARKS

_log = logging.getLogger("MimicScheduler")
_engine_log = logging.getLogger("MimicEngine")

# Named loggers that take the configured logging.level.
MIMIC_LOGGERS = (
    "MimicScheduler", "MimicEngine", "MimicFacePipeline", "MimicDecoder",
    "MimicExpressions", "MimicModels", "MimicCamera", "MimicLogger",
)


# ═══════════════════════════════════════════════════════════════
# Tracking Scheduler
# ═══════════════════════════════════════════════════════════════

class TrackingScheduler:
    """Detect-or-reuse state machine around a FaceTrackingPipeline.

    States are `idle` and `busy`; `busy` means the in-flight slot is
    held. The slot is a non-blocking lock so a concurrent caller is
    turned away instead of queued.
    """

    def __init__(
        self,
        pipeline: FaceTrackingPipeline,
        expressions: Optional[ExpressionSession] = None,
        redetect_interval_ms: float = DETECT_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pipeline = pipeline
        self.expressions = expressions or ExpressionSession()
        self.redetect_interval_ms = redetect_interval_ms
        self._clock = clock
        self._slot = threading.Lock()

        self.cached_box: Optional[Box] = None
        self.last_detect_time: Optional[float] = None
        self.last_timing: dict = {}

        self.processed = 0
        self.dropped = 0
        self.errors = 0
        self.last_error: Optional[BaseException] = None

    # ── State ─────────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._slot.locked()

    @property
    def state(self) -> str:
        return "busy" if self.busy else "idle"

    @contextmanager
    def _in_flight(self) -> Iterator[bool]:
        """Try to take the slot; yields whether it was acquired."""
        acquired = self._slot.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._slot.release()

    def _needs_detection(self, now: float) -> bool:
        if self.cached_box is None or self.last_detect_time is None:
            return True
        return (now - self.last_detect_time) * 1000.0 > self.redetect_interval_ms

    # ── Public API ────────────────────────────────────────────

    def process(self, frame: np.ndarray) -> Optional[TrackingResult]:
        """Run one tracking step. Returns None when busy, faceless or failed."""
        with self._in_flight() as acquired:
            if not acquired:
                self.dropped += 1
                _log.debug("Frame dropped: inference already in flight")
                return None
            try:
                return self._track(frame)
            except Exception as e:
                self.errors += 1
                self.last_error = e
                _log.error("Inference failed: %s", e, exc_info=True)
                return None

    def _track(self, frame: np.ndarray) -> Optional[TrackingResult]:
        t_start = time.monotonic()
        timing: dict = {}
        now = self._clock()

        # Staged so a failure below leaves the cached state untouched.
        box = self.cached_box
        detect_time = self.last_detect_time
        redetected = False

        if self._needs_detection(now):
            t0 = time.monotonic()
            faces = self.pipeline.detect_faces(frame)
            timing["detect_ms"] = (time.monotonic() - t0) * 1000
            box = faces[0].box if faces else None
            detect_time = now
            redetected = True

        if box is None:
            self._commit(box, detect_time, timing, t_start)
            return None

        t0 = time.monotonic()
        landmarks = self.pipeline.detect_landmarks(frame, box)
        timing["landmarks_ms"] = (time.monotonic() - t0) * 1000
        if len(landmarks) < NUM_LANDMARKS:
            self._commit(box, detect_time, timing, t_start)
            return None

        t0 = time.monotonic()
        orientation = calculate_face_orientation(landmarks)
        expressions = self.expressions.extract(landmarks)
        timing["signals_ms"] = (time.monotonic() - t0) * 1000

        self._commit(box, detect_time, timing, t_start)
        self.processed += 1
        return TrackingResult(
            box=box,
            landmarks=landmarks,
            orientation=orientation,
            expressions=expressions,
            timestamp=now,
            redetected=redetected,
        )

    def _commit(self, box: Optional[Box], detect_time: Optional[float],
                timing: dict, t_start: float) -> None:
        self.cached_box = box
        self.last_detect_time = detect_time
        timing["total_ms"] = (time.monotonic() - t_start) * 1000
        self.last_timing = timing

    def reset(self) -> None:
        """Forget the cached box and recalibrate expressions.

        Waits for any in-flight step so reset never interleaves with one.
        """
        with self._slot:
            self.cached_box = None
            self.last_detect_time = None
            self.last_timing = {}
            self.expressions.reset()
        _log.info("Tracking session reset")


# ═══════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════

class MimicEngine:
    """
    Async capture/inference engine around a TrackingScheduler.
    Feeds frames from a MimicCamera (or the host) and keeps the latest
    successful result for a render loop that polls at its own rate.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        pipeline: Optional[FaceTrackingPipeline] = None,
        camera=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = merge_config(CONFIG, config)
        log_cfg = self.config["logging"]
        level = getattr(logging, str(log_cfg["level"]).upper(), logging.INFO)
        for name in MIMIC_LOGGERS:
            setup_logger(name, level)

        self.logger = get_logger(log_cfg["log_dir"])
        self._log_frames = bool(log_cfg.get("log_frames", True))
        self.logger.log({"event": "engine_init_start", "config": self.config})

        if pipeline is None:
            pipeline = FaceTrackingPipeline.from_config(self.config)
            if not pipeline.load_models():
                self.logger.error("Failed to load tracking models")
                raise RuntimeError("Models not loaded")
        self.pipeline = pipeline

        expr_cfg = self.config["expressions"]
        self.expressions = ExpressionSession(
            seed_ranges=expr_cfg["seed_ranges"],
            ema_factor=expr_cfg["ema_factor"],
            contraction_rate=expr_cfg["contraction_rate"],
        )
        self.scheduler = TrackingScheduler(
            self.pipeline,
            self.expressions,
            redetect_interval_ms=self.config["scheduler"]["redetect_interval_ms"],
            clock=clock,
        )
        avatar_cfg = self.config["avatar"]
        self.head = HeadRotationFollower(
            damping=avatar_cfg["rotation_damping"],
            lerp=avatar_cfg["rotation_lerp"],
        )

        self.camera = camera

        # Single-slot mailbox: newest frame wins.
        self.frame_queue: queue.Queue = queue.Queue(maxsize=1)
        self._latest: Optional[EngineResult] = None
        self._latest_lock = threading.Lock()

        # Monitoring
        self.running = False
        self.dropped_frames = 0
        self._frame_times: deque = deque(maxlen=120)
        self._process = psutil.Process()
        self._cam_thread: Optional[threading.Thread] = None
        self._infer_thread: Optional[threading.Thread] = None

        self.logger.log({"event": "engine_init_complete"})

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self, capture: bool = True) -> None:
        """Start the inference thread, and the capture thread if asked.

        With capture=False the host feeds frames through submit_frame().
        """
        self.running = True
        if capture:
            if self.camera is None:
                cam_cfg = self.config["camera"]
                self.camera = MimicCamera(
                    camera_id=cam_cfg["camera_id"],
                    width=cam_cfg["width"],
                    height=cam_cfg["height"],
                )
            self._cam_thread = threading.Thread(target=self._capture_loop, daemon=True)
            self._cam_thread.start()

        self._infer_thread = threading.Thread(target=self._inference_loop, daemon=True)
        self._infer_thread.start()
        self.logger.log({"event": "engine_started", "capture": capture})
        _engine_log.info("MimicEngine started (capture=%s)", capture)

    def stop(self) -> None:
        """Stop threads and clean up."""
        self.running = False
        for thread in (self._cam_thread, self._infer_thread):
            if thread is not None:
                thread.join(timeout=1.0)
        if self.camera is not None:
            self.camera.release()
        self.logger.log({
            "event": "engine_stopped",
            "processed": self.scheduler.processed,
            "dropped_frames": self.dropped_frames,
            "scheduler_dropped": self.scheduler.dropped,
            "errors": self.scheduler.errors,
        })
        _engine_log.info("MimicEngine stopped — processed=%d dropped=%d errors=%d",
                         self.scheduler.processed, self.dropped_frames,
                         self.scheduler.errors)
        self.logger.close()

    def __enter__(self) -> "MimicEngine":
        return self

    def __exit__(self, *args) -> None:
        self.stop()

    # ── Frame intake ──────────────────────────────────────────

    def submit_frame(self, frame: np.ndarray, ts: Optional[float] = None) -> None:
        """Offer a frame to the inference thread, replacing any unread one."""
        item = (frame, time.monotonic() if ts is None else ts)
        try:
            self.frame_queue.put_nowait(item)
        except queue.Full:
            try:
                self.frame_queue.get_nowait()
                self.dropped_frames += 1
            except queue.Empty:
                pass
            try:
                self.frame_queue.put_nowait(item)
            except queue.Full:
                # Another producer refilled the slot first; its frame is as new.
                self.dropped_frames += 1

    def _capture_loop(self) -> None:
        """Thread 1: capture validated frames."""
        while self.running:
            ok, frame, ts = self.camera.read_validated_frame()
            if ok:
                self.submit_frame(frame, ts)
            else:
                time.sleep(0.01)

    def _inference_loop(self) -> None:
        """Thread 2: track the newest frame."""
        while self.running:
            try:
                frame, ts = self.frame_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self.process_frame(frame, ts)

    # ── Processing ────────────────────────────────────────────

    def process_frame(self, frame: np.ndarray, ts: Optional[float] = None) -> EngineResult:
        """Run one scheduler step synchronously and record the outcome."""
        t_start = time.monotonic()
        errors_before = self.scheduler.errors
        tracking = self.scheduler.process(frame)
        t_total = time.monotonic() - t_start

        self._frame_times.append(t_total)
        total = sum(self._frame_times)
        fps = len(self._frame_times) / total if total > 0 else 0.0
        memory_mb = self._process.memory_info().rss / 1e6

        result = EngineResult(
            tracking=tracking,
            timestamp=time.monotonic() if ts is None else ts,
            fps=fps,
            timing_breakdown=dict(self.scheduler.last_timing),
            camera_health=self.camera.get_health_status() if self.camera else {},
            memory_mb=memory_mb,
            dropped_frames=self.dropped_frames,
        )

        if tracking is not None:
            with self._latest_lock:
                self._latest = result
        if self.scheduler.errors != errors_before:
            self.logger.error("Inference failed", self.scheduler.last_error)

        if self._log_frames:
            self.logger.log_frame({
                "timestamp": result.timestamp,
                "tracked": tracking is not None,
                "tracking": tracking.to_dict() if tracking else None,
                "fps": fps,
                "timing": result.timing_breakdown,
                "memory_mb": memory_mb,
            })
        return result

    # ── Render-loop accessors ─────────────────────────────────

    def get_latest_result(self) -> Optional[EngineResult]:
        """Most recent result that carried tracking data. Never blocks."""
        with self._latest_lock:
            return self._latest

    def current_signals(self) -> tuple[Orientation, ExpressionWeights]:
        """Latest orientation and expressions, or neutral defaults."""
        latest = self.get_latest_result()
        if latest is None or latest.tracking is None:
            return Orientation(), ExpressionWeights()
        return latest.tracking.orientation, latest.tracking.expressions.copy()

    def step_head_rotation(self) -> tuple[float, float, float]:
        """Advance the damped head rotation by one render frame."""
        orientation, _ = self.current_signals()
        return self.head.step(orientation)

    def reset(self) -> None:
        """Drop the cached face and recalibrate."""
        self.scheduler.reset()
        self.head.reset()
        with self._latest_lock:
            self._latest = None
        self.logger.log({"event": "session_reset"})
