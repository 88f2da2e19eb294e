"""
Mimic V1 — Launcher
===================
Runs the tracking engine on a webcam or video file and streams the
tracking signals as JSON lines on stdout, one per new tracking result.

The main loop plays the role of a render loop: it ticks at a fixed
rate, never waits on inference, and falls back to neutral signals
until the first face is tracked.

Usage:
  python start_mimic.py --source 0
  python start_mimic.py --source clip.mp4 --max-seconds 20
  python start_mimic.py --source 0 --detector-model models/tfd.onnx --rate 60

Developer: Mimic Team
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from typing import Optional

from mimic_engine import MimicEngine
from mimic_logger import MimicJSONEncoder
from mimic_utils_core import load_config, merge_config, setup_logger

_log = setup_logger("MimicLauncher")


def build_config(args: argparse.Namespace) -> dict:
    """Merge CLI flags over the YAML config."""
    config = load_config(args.config)
    source = int(args.source) if args.source.isdigit() else args.source
    overrides: dict = {"camera": {"camera_id": source}}
    # Flag paths are relative to the caller's cwd, config.yaml paths to the project root.
    if args.detector_model:
        overrides.setdefault("detector", {})["model_path"] = os.path.abspath(args.detector_model)
    if args.landmark_model:
        overrides.setdefault("landmarks", {})["model_path"] = os.path.abspath(args.landmark_model)
    if args.input_size:
        overrides.setdefault("detector", {})["input_size"] = args.input_size
    if args.log_dir:
        overrides.setdefault("logging", {})["log_dir"] = args.log_dir
    if args.verbose:
        overrides.setdefault("logging", {})["level"] = "DEBUG"
    return merge_config(config, overrides)


def signals_record(engine: MimicEngine) -> dict:
    """One JSON-ready line describing what a renderer would draw now."""
    orientation, expressions = engine.current_signals()
    latest = engine.get_latest_result()
    record = {
        "timestamp": latest.timestamp if latest else None,
        "orientation": orientation.to_dict(),
        "expressions": expressions.to_dict(),
        "head_rotation": engine.step_head_rotation(),
    }
    if latest is not None and latest.tracking is not None:
        record["box"] = latest.tracking.box.to_dict()
        record["fps"] = latest.fps
    return record


def run(engine: MimicEngine, rate: float, max_seconds: Optional[float],
        out=sys.stdout) -> int:
    """Tick at `rate` Hz until stopped; returns number of lines written."""
    period = 1.0 / rate
    started = time.monotonic()
    last_ts = None
    written = 0

    while engine.running:
        tick = time.monotonic()
        if max_seconds is not None and tick - started >= max_seconds:
            break
        camera = engine.camera
        if camera is not None and getattr(camera, "exhausted", False):
            _log.info("Video source exhausted")
            break

        latest = engine.get_latest_result()
        if latest is not None and latest.timestamp != last_ts:
            last_ts = latest.timestamp
            out.write(json.dumps(signals_record(engine), cls=MimicJSONEncoder) + "\n")
            out.flush()
            written += 1
        else:
            # Keep the rig easing between inference results.
            engine.step_head_rotation()

        time.sleep(max(0.0, period - (time.monotonic() - tick)))
    return written


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Mimic V1 face tracker")
    parser.add_argument("--source", type=str, default="0",
                        help="Camera index (0, 1, ...) or video file path")
    parser.add_argument("--config", type=str, default=None,
                        help="Path to config.yaml (default: project root)")
    parser.add_argument("--detector-model", type=str, default=None,
                        help="Tiny face detector ONNX model")
    parser.add_argument("--landmark-model", type=str, default=None,
                        help="68-point landmark ONNX model")
    parser.add_argument("--input-size", type=int, default=None,
                        help="Detector input size (160 real-time, 320 stills)")
    parser.add_argument("--rate", type=float, default=30.0,
                        help="Output loop rate in Hz")
    parser.add_argument("--max-seconds", type=float, default=None,
                        help="Stop after this many seconds")
    parser.add_argument("--log-dir", type=str, default=None,
                        help="Directory for the JSONL session log")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    config = build_config(args)
    _log.info("Source: %s", config["camera"]["camera_id"])
    _log.info("Detector: %s (input %d)", config["detector"]["model_path"],
              config["detector"]["input_size"])
    _log.info("Landmarks: %s", config["landmarks"]["model_path"])

    try:
        engine = MimicEngine(config)
    except RuntimeError as e:
        _log.error("Engine failed to start: %s", e)
        return 1

    try:
        engine.start(capture=True)
        run(engine, args.rate, args.max_seconds)
    except KeyboardInterrupt:
        _log.info("Interrupted by user")
    finally:
        engine.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
