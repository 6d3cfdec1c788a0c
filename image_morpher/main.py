from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

if __package__ is None or __package__ == "":
    ROOT = Path(__file__).resolve().parent.parent
    if str(ROOT) not in sys.path:
        sys.path.insert(0, str(ROOT))

from image_morpher.configuration import build_config, load_preset
from image_morpher.errors import MorphError
from image_morpher.pipeline import pipeline_from_config

logger = logging.getLogger(__name__)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Feature-guided image morphing")
    parser.add_argument("--image-a", dest="image_a", help="Path to the start image")
    parser.add_argument("--image-b", dest="image_b", help="Path to the end image")
    parser.add_argument("--features", help="Feature pair file (YAML/JSON)")
    parser.add_argument("--output", help="Output video file (MP4)")
    parser.add_argument(
        "--output-frame-pattern",
        help="File pattern for frame export, e.g. frames/morph_{index:04d}.png",
    )
    parser.add_argument("--preset", help="Preset file (YAML/JSON)")
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--preview", action="store_true", default=None, help="Use preview defaults")
    mode_group.add_argument("--full", action="store_true", default=None, help="Use production defaults")

    parser.add_argument("--frames", type=int, help="Number of frames including both endpoints")
    parser.add_argument("--fps", type=float, help="Frame rate of the output video")
    parser.add_argument("--width", type=int, help="Output width")
    parser.add_argument("--height", type=int, help="Output height")
    parser.add_argument("--a", type=float, help="Additive distance constant of the warp weight")
    parser.add_argument("--b", type=float, help="Distance exponent of the warp weight")
    parser.add_argument("--p", type=float, help="Segment length exponent of the warp weight")
    parser.add_argument("--edge-policy", dest="edge_policy", choices=["clamp"], help="Out-of-bounds sampling policy")
    parser.add_argument("--workers", type=int, help="Frame worker threads")
    parser.add_argument("--chunk-rows", dest="chunk_rows", type=int, help="Scanlines per cancellation check")
    parser.add_argument("--timeout", type=float, help="Abort generation after this many seconds")
    parser.add_argument("--config-name", dest="config_name", help="Name of the active preset")
    parser.add_argument("--log-level", dest="log_level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    cli_args = {k: v for k, v in vars(args).items() if v is not None and k != "preset"}

    try:
        preset_data = load_preset(Path(args.preset)) if args.preset else None
        config = build_config(cli_args, preset_data)
    except FileNotFoundError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("File not found: %s", exc)
        return 1
    except MorphError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("%s", exc)
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    pipeline = pipeline_from_config(config)
    try:
        pipeline.run()
    except KeyboardInterrupt:
        pipeline.cancel()
        logger.warning("Interrupted")
        return 130
    except (MorphError, FileNotFoundError) as exc:
        logger.error("Morph failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
