"""
Mimic V1 — Scheduler & Engine Tests
===================================
Validates the tracking scheduler (detect/reuse cadence, single in-flight
slot, error release, reset) and the MimicEngine wrapper (mailbox,
latest-result fallback, head rotation, threads).
"""

import logging
import threading
import time
import unittest
from unittest.mock import MagicMock, patch

import numpy as np

from conftest import make_face_landmarks
from mimic_types import Box, Detection, ExpressionWeights, Orientation
from mimic_engine import MIMIC_LOGGERS, MimicEngine, TrackingScheduler
from mimic_expressions import ExpressionSession


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakePipeline:
    """Scripted detector/landmark collaborator."""

    def __init__(self, boxes=None, landmarks=None):
        self.boxes = [Box(100, 60, 100, 100)] if boxes is None else boxes
        self.landmarks = make_face_landmarks(offset=(0, -20)) if landmarks is None else landmarks
        self.detect_calls = 0
        self.landmark_calls = 0
        self.detect_error = None
        self.landmark_error = None

    def detect_faces(self, frame):
        self.detect_calls += 1
        if self.detect_error:
            raise self.detect_error
        return [Detection(box=b, score=0.9 - i * 0.1) for i, b in enumerate(self.boxes)]

    def detect_landmarks(self, frame, box):
        self.landmark_calls += 1
        if self.landmark_error:
            raise self.landmark_error
        return self.landmarks


class BlockingPipeline(FakePipeline):
    """Holds the landmark step until released, to keep a step in flight."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def detect_landmarks(self, frame, box):
        self.entered.set()
        self.release.wait(timeout=5.0)
        return super().detect_landmarks(frame, box)


FRAME = np.zeros((240, 320, 3), dtype=np.uint8)


# ═══════════════════════════════════════════════════════════════
# TrackingScheduler
# ═══════════════════════════════════════════════════════════════

class TestTrackingScheduler(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.pipeline = FakePipeline()
        self.scheduler = TrackingScheduler(self.pipeline, clock=self.clock)

    def test_first_call_detects_and_tracks(self):
        result = self.scheduler.process(FRAME)
        self.assertIsNotNone(result)
        self.assertTrue(result.redetected)
        self.assertEqual(result.box, Box(100, 60, 100, 100))
        self.assertEqual(result.landmarks.shape, (68, 2))
        self.assertEqual(self.scheduler.cached_box, Box(100, 60, 100, 100))
        self.assertEqual(self.scheduler.state, "idle")
        self.assertIn("detect_ms", self.scheduler.last_timing)
        self.assertIn("total_ms", self.scheduler.last_timing)

    def test_uses_highest_scored_detection(self):
        self.pipeline.boxes = [Box(10, 10, 50, 50), Box(200, 100, 40, 40)]
        result = self.scheduler.process(FRAME)
        self.assertEqual(result.box, Box(10, 10, 50, 50))

    def test_reuses_cached_box_within_interval(self):
        self.scheduler.process(FRAME)
        self.clock.now += 0.2
        result = self.scheduler.process(FRAME)
        self.assertFalse(result.redetected)
        self.assertEqual(self.pipeline.detect_calls, 1)
        self.assertEqual(self.pipeline.landmark_calls, 2)

    def test_redetects_after_interval(self):
        self.scheduler.process(FRAME)
        self.clock.now += 0.5
        self.scheduler.process(FRAME)
        self.assertEqual(self.pipeline.detect_calls, 1)  # exactly 500 ms: still cached

        self.clock.now += 0.001
        result = self.scheduler.process(FRAME)
        self.assertTrue(result.redetected)
        self.assertEqual(self.pipeline.detect_calls, 2)

    def test_no_face_returns_none_and_retries_next_frame(self):
        self.pipeline.boxes = []
        self.assertIsNone(self.scheduler.process(FRAME))
        self.assertIsNone(self.scheduler.cached_box)
        self.assertEqual(self.pipeline.landmark_calls, 0)

        self.pipeline.boxes = [Box(0, 0, 80, 80)]
        self.assertIsNotNone(self.scheduler.process(FRAME))
        self.assertEqual(self.pipeline.detect_calls, 2)

    def test_lost_face_clears_cached_box_on_redetect(self):
        self.scheduler.process(FRAME)
        self.pipeline.boxes = []
        self.clock.now += 1.0
        self.assertIsNone(self.scheduler.process(FRAME))
        self.assertIsNone(self.scheduler.cached_box)

    def test_empty_landmarks_give_no_result(self):
        self.pipeline.landmarks = np.empty((0, 2))
        self.assertIsNone(self.scheduler.process(FRAME))
        self.assertEqual(self.scheduler.state, "idle")

    def test_result_carries_orientation_and_expressions(self):
        result = self.scheduler.process(FRAME)
        self.assertAlmostEqual(result.orientation.yaw, 0.0)
        self.assertAlmostEqual(result.orientation.pitch, 12.0)
        self.assertAlmostEqual(result.expressions.mouth_open, 0.5)

    def test_concurrent_request_is_dropped(self):
        pipeline = BlockingPipeline()
        scheduler = TrackingScheduler(pipeline, clock=self.clock)
        results = []
        worker = threading.Thread(target=lambda: results.append(scheduler.process(FRAME)))
        worker.start()
        self.assertTrue(pipeline.entered.wait(timeout=5.0))

        self.assertTrue(scheduler.busy)
        self.assertEqual(scheduler.state, "busy")
        self.assertIsNone(scheduler.process(FRAME))
        self.assertEqual(scheduler.dropped, 1)
        self.assertEqual(pipeline.detect_calls, 1)

        pipeline.release.set()
        worker.join(timeout=5.0)
        self.assertIsNotNone(results[0])
        self.assertFalse(scheduler.busy)
        self.assertIsNotNone(scheduler.process(FRAME))

    def test_detection_error_releases_slot_and_keeps_state(self):
        self.scheduler.process(FRAME)
        cached = self.scheduler.cached_box
        detected_at = self.scheduler.last_detect_time

        self.clock.now += 1.0
        self.pipeline.detect_error = RuntimeError("detector exploded")
        with self.assertLogs("MimicScheduler", level="ERROR"):
            self.assertIsNone(self.scheduler.process(FRAME))

        self.assertFalse(self.scheduler.busy)
        self.assertEqual(self.scheduler.errors, 1)
        self.assertEqual(self.scheduler.cached_box, cached)
        self.assertEqual(self.scheduler.last_detect_time, detected_at)

        self.pipeline.detect_error = None
        self.assertIsNotNone(self.scheduler.process(FRAME))

    def test_landmark_error_after_redetect_keeps_old_box(self):
        self.scheduler.process(FRAME)
        self.pipeline.boxes = [Box(5, 5, 60, 60)]
        self.pipeline.landmark_error = ValueError("bad output")
        self.clock.now += 1.0
        with self.assertLogs("MimicScheduler", level="ERROR"):
            self.assertIsNone(self.scheduler.process(FRAME))
        self.assertEqual(self.scheduler.cached_box, Box(100, 60, 100, 100))

    def test_error_does_not_touch_calibration(self):
        self.scheduler.process(FRAME)
        before = self.scheduler.expressions.current()
        self.pipeline.landmark_error = RuntimeError("boom")
        with self.assertLogs("MimicScheduler", level="ERROR"):
            self.scheduler.process(FRAME)
        self.assertEqual(self.scheduler.expressions.current(), before)

    def test_reset_clears_box_and_calibration(self):
        session = ExpressionSession()
        scheduler = TrackingScheduler(self.pipeline, session, clock=self.clock)
        scheduler.process(FRAME)
        scheduler.reset()
        self.assertIsNone(scheduler.cached_box)
        self.assertIsNone(scheduler.last_detect_time)
        self.assertFalse(session.has_output)

        scheduler.process(FRAME)
        self.assertEqual(self.pipeline.detect_calls, 2)


# ═══════════════════════════════════════════════════════════════
# MimicEngine
# ═══════════════════════════════════════════════════════════════

class TestMimicEngine(unittest.TestCase):

    def setUp(self):
        self.logger_patcher = patch("mimic_engine.get_logger")
        self.mock_get_logger = self.logger_patcher.start()
        self.mock_logger = MagicMock()
        self.mock_get_logger.return_value = self.mock_logger

        self.clock = FakeClock()
        self.pipeline = FakePipeline()
        self.engine = MimicEngine({"logging": {"log_dir": "unused"}},
                                  pipeline=self.pipeline, clock=self.clock)

    def tearDown(self):
        self.logger_patcher.stop()

    def test_neutral_signals_before_first_result(self):
        self.assertIsNone(self.engine.get_latest_result())
        orientation, expressions = self.engine.current_signals()
        self.assertEqual(orientation, Orientation())
        self.assertEqual(expressions, ExpressionWeights())

    def test_process_frame_records_latest_result(self):
        result = self.engine.process_frame(FRAME, ts=1.0)
        self.assertIsNotNone(result.tracking)
        self.assertEqual(result.timestamp, 1.0)
        self.assertGreater(result.memory_mb, 0)
        self.assertIs(self.engine.get_latest_result(), result)
        self.mock_logger.log_frame.assert_called()

    def test_failed_frame_keeps_previous_result(self):
        good = self.engine.process_frame(FRAME, ts=1.0)
        self.pipeline.boxes = []
        self.clock.now += 1.0
        bad = self.engine.process_frame(FRAME, ts=2.0)
        self.assertIsNone(bad.tracking)
        self.assertIs(self.engine.get_latest_result(), good)
        orientation, _ = self.engine.current_signals()
        self.assertAlmostEqual(orientation.pitch, 12.0)

    def test_inference_error_is_written_to_session_log(self):
        self.pipeline.detect_error = RuntimeError("model crashed")
        with self.assertLogs("MimicScheduler", level="ERROR"):
            result = self.engine.process_frame(FRAME)
        self.assertIsNone(result.tracking)
        message, exc = self.mock_logger.error.call_args[0]
        self.assertEqual(message, "Inference failed")
        self.assertIsInstance(exc, RuntimeError)

    def test_submit_frame_keeps_only_newest(self):
        frames = [np.full((2, 2, 3), i, dtype=np.uint8) for i in range(3)]
        for i, f in enumerate(frames):
            self.engine.submit_frame(f, ts=float(i))
        self.assertEqual(self.engine.frame_queue.qsize(), 1)
        self.assertEqual(self.engine.dropped_frames, 2)
        frame, ts = self.engine.frame_queue.get_nowait()
        self.assertEqual(ts, 2.0)

    def test_head_rotation_eases_toward_orientation(self):
        self.engine.process_frame(FRAME)
        first = self.engine.step_head_rotation()
        second = self.engine.step_head_rotation()
        target = np.radians(12.0 * 0.7)
        self.assertAlmostEqual(first[0], target * 0.15)
        self.assertGreater(second[0], first[0])
        self.assertLess(second[0], target)

    def test_reset_returns_to_neutral(self):
        self.engine.process_frame(FRAME)
        self.engine.reset()
        self.assertIsNone(self.engine.get_latest_result())
        self.assertEqual(self.engine.current_signals()[0], Orientation())

    def test_config_overrides_reach_scheduler(self):
        engine = MimicEngine({"scheduler": {"redetect_interval_ms": 50}},
                             pipeline=self.pipeline)
        self.assertEqual(engine.scheduler.redetect_interval_ms, 50)
        self.assertEqual(engine.config["expressions"]["ema_factor"], 0.3)

    def test_configured_level_reaches_every_logger(self):
        for name in MIMIC_LOGGERS:
            self.addCleanup(logging.getLogger(name).setLevel, logging.INFO)
        MimicEngine({"logging": {"log_dir": "unused", "level": "DEBUG"}},
                    pipeline=self.pipeline)
        for name in ("MimicScheduler", "MimicFacePipeline", "MimicDecoder",
                     "MimicExpressions", "MimicModels", "MimicCamera", "MimicLogger"):
            self.assertEqual(logging.getLogger(name).level, logging.DEBUG, name)

    def test_missing_models_raise(self):
        with patch("mimic_engine.FaceTrackingPipeline.from_config") as from_config:
            from_config.return_value.load_models.return_value = False
            with self.assertRaises(RuntimeError):
                MimicEngine()

    def test_inference_thread_processes_submitted_frames(self):
        self.engine.start(capture=False)
        try:
            self.engine.submit_frame(FRAME)
            deadline = time.monotonic() + 5.0
            while self.engine.get_latest_result() is None and time.monotonic() < deadline:
                time.sleep(0.01)
            self.assertIsNotNone(self.engine.get_latest_result())
        finally:
            self.engine.stop()
        self.mock_logger.close.assert_called_once()

    def test_capture_thread_feeds_camera_frames(self):
        camera = MagicMock()
        camera.read_validated_frame.return_value = (True, FRAME, 1.0)
        camera.get_health_status.return_value = {"connected": True}
        engine = MimicEngine(pipeline=self.pipeline, camera=camera)
        engine.start(capture=True)
        try:
            deadline = time.monotonic() + 5.0
            while engine.get_latest_result() is None and time.monotonic() < deadline:
                time.sleep(0.01)
            latest = engine.get_latest_result()
            self.assertIsNotNone(latest)
            self.assertEqual(latest.camera_health, {"connected": True})
        finally:
            engine.stop()
        camera.release.assert_called_once()


if __name__ == '__main__':
    unittest.main()
