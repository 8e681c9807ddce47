"""
Automatic Face Capture CLI Entrypoint.

Responsibility:
    Parse command-line arguments, configure the application, wire the
    camera, detection engine, storage and state machine together, and run
    the interactive window until the user quits.

Usage:
    python main.py                                  # Webcam 0, defaults
    python main.py --auto-start --dwell 1.5
    python main.py --source demo.mp4 --model accurate
    python main.py --config my_config.yaml

Keys: s/space start, c cancel, r reset, q/ESC quit.

This module is the executable entry point. It should not be imported
by other modules.
"""

import argparse
import asyncio
import logging
import sys

# Configure logging before importing local modules
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("main")

from autocapture.config import AppConfig, load_config, validate_config
from autocapture.engine import DnnDetectionEngine, EngineOptions
from autocapture.frame_source import CameraFrameSource
from autocapture.persistence import LocalImageStore
from autocapture.presenter import OpenCvPresenter
from autocapture.session import SessionStateMachine


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Automatic Face Capture — hands-free face photo",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--source",
        type=str,
        help="Camera source: device index like '0', or a video file path.",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to YAML configuration file.",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        help="Face confidence (0.0 - 1.0) that triggers the capture. Overrides config.",
    )
    parser.add_argument(
        "--dwell",
        type=float,
        help="Seconds the 'captured' feedback stays on screen. Overrides config.",
    )
    parser.add_argument(
        "--model",
        type=str,
        choices=["fast", "accurate"],
        help="Detection model variant. Overrides config.",
    )
    parser.add_argument(
        "--backend",
        type=str,
        choices=["cpu", "cuda"],
        help="Compute backend preference. Overrides config.",
    )
    parser.add_argument(
        "--save-path",
        type=str,
        help="Directory where the captured face is stored. Overrides config.",
    )
    parser.add_argument(
        "--auto-start",
        action="store_true",
        help="Start capturing immediately instead of waiting for the start key.",
    )

    return parser.parse_args()


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply CLI overrides on top of the loaded configuration."""
    # We must use object.__setattr__ because the dataclasses are frozen
    if args.source is not None:
        object.__setattr__(config.camera, "source", args.source)

    if args.threshold is not None:
        object.__setattr__(config.capture, "acceptance_threshold", args.threshold)

    if args.dwell is not None:
        object.__setattr__(config.capture, "dwell_seconds", args.dwell)

    if args.model is not None:
        object.__setattr__(config.detection, "model", args.model)

    if args.backend is not None:
        object.__setattr__(config.model, "backend", args.backend)

    if args.save_path is not None:
        object.__setattr__(config.storage, "save_path", args.save_path)

    validate_config(config)

    return config


async def run_app(config: AppConfig, auto_start: bool = False) -> None:
    """Wire the components and run until the user quits."""
    engine = DnnDetectionEngine(config.model, EngineOptions.from_config(config))
    frame_source = CameraFrameSource(config.camera)
    store = LocalImageStore(config.storage)
    machine = SessionStateMachine(
        frame_source,
        engine,
        store,
        config.capture,
        storage_key=config.storage.key,
    )
    presenter = OpenCvPresenter(
        machine,
        config.visualization,
        canvas_size=(config.camera.width, config.camera.height),
    )

    warm_up = asyncio.get_running_loop().create_task(engine.warm_up())
    try:
        if auto_start:
            machine.start()
        await presenter.run()
    finally:
        warm_up.cancel()
        machine.close()
        frame_source.close()
        engine.close()
        presenter.close()


def main() -> int:
    """Main execution."""
    args = parse_args()

    # 1. Load Configuration (CLI args > ENV > YAML > Defaults)
    try:
        config = apply_overrides(load_config(args.config), args)
        logger.info("Configuration active for this run.")
    except Exception as e:
        logger.error("Configuration error: %s", e)
        return 1

    # 2. Run the interactive session
    try:
        asyncio.run(run_app(config, auto_start=args.auto_start))
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
    except Exception as e:
        logger.exception("Runtime error: %s", e)
        return 1

    logger.info("Face capture finished.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
