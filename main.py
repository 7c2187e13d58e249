"""
Watermark Eraser - command line

Usage:
    python main.py <image> [--template xcom_dark.png] [--output out.png] [--sync]

Example:
    python main.py data/screenshot.jpg --template assets/xcom_dark.png -o cleaned.png
"""

import argparse
import sys
import time
from pathlib import Path

from detector import WatermarkDetector
from errors import WatermarkError
from imaging import MAX_WORKING_WIDTH, Template, load_rgba, save_png
from pipeline import RECT_MARGIN, remove_watermark
from worker import DEFAULT_TIMEOUT, DetectionClient

EXIT_NOT_FOUND = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Detect and remove a watermark from an image")
    parser.add_argument("image", help="Path to the watermarked image")
    parser.add_argument("--template", "-t", default="xcom_dark.png",
                        help="Path to the watermark template image")
    parser.add_argument("--output", "-o", default=None,
                        help="Output PNG (default: <image>_unwatermarked.png)")
    parser.add_argument("--sync", action="store_true",
                        help="Search in this thread instead of the background worker")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help="Worker timeout in seconds")
    parser.add_argument("--max-width", type=int, default=MAX_WORKING_WIDTH,
                        help="Width of the working copy used for the search")
    parser.add_argument("--accept", type=float, default=0.87,
                        help="Minimum score (exclusive) to accept a match")
    parser.add_argument("--margin", type=int, default=RECT_MARGIN,
                        help="Extra pixels removed around the detected box")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    image_path = Path(args.image)
    output_path = Path(args.output) if args.output else image_path.with_name(
        f"{image_path.stem}_unwatermarked.png")

    try:
        rgba = load_rgba(image_path)
        template = Template.from_image(args.template)
    except (OSError, ValueError) as e:
        print(f"[MAIN] Error: {e}")
        return 1

    print(f"[MAIN] Image: {rgba.shape[1]}×{rgba.shape[0]} | Template: {template.width}×{template.height}")

    detector = WatermarkDetector(accept_above=args.accept)
    start_time = time.time()

    try:
        if args.sync:
            removal = remove_watermark(rgba, template, detector=detector,
                                       max_width=args.max_width, margin=args.margin)
        else:
            with DetectionClient(timeout=args.timeout, detector_factory=lambda: detector) as client:
                removal = remove_watermark(rgba, template, client=client,
                                           max_width=args.max_width, margin=args.margin)
    except WatermarkError as e:
        print(f"[MAIN] Failed to process the image: {e}")
        return 1

    elapsed = time.time() - start_time

    if removal is None:
        print("[MAIN] Could not detect the watermark. Make sure the marked area is visible.")
        return EXIT_NOT_FOUND

    save_png(removal.image, output_path)
    print(f"[MAIN] ✅ Done in {elapsed:.2f}s (score {removal.match.score:.3f})")
    print(f"[MAIN] Saved: {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
