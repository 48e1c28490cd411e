from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import cv2

from .detector import detect
from .draw import draw_keypoints
from .integral import read_rgb
from .serialize import save_keypoints


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fasthessian",
        description="Detect Fast-Hessian interest points and write an overlay image plus a JSON list.",
        epilog="Example usage:\n  python -m fasthessian graf.png -o 3 -t 0.0005",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("inputs", nargs="+", type=Path, help="Paths to image files to be processed.")
    parser.add_argument("-o", "--octaves", type=int, default=2, help="Number of octaves (min 1, max 5).")
    parser.add_argument(
        "-i",
        "--init-sample",
        type=int,
        default=2,
        help="Initial sampling step in width & height.",
    )
    parser.add_argument("-t", "--threshold", type=float, default=0.001, help="Response threshold for an interest point.")
    parser.add_argument("--out-dir", type=Path, default=Path("."), help="Directory for the outputs.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log pipeline stages.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    args.out_dir.mkdir(parents=True, exist_ok=True)

    for path in args.inputs:
        try:
            img = read_rgb(path)
            keypoints = detect(img, args.threshold, args.octaves, args.init_sample)
        except (FileNotFoundError, ValueError) as e:
            parser.error(str(e))

        out_img = args.out_dir / f"interest-points-{path.stem}.jpg"
        overlay = draw_keypoints(img, keypoints)
        cv2.imwrite(str(out_img), cv2.cvtColor(overlay, cv2.COLOR_RGB2BGR))
        out_json = save_keypoints(out_img.with_suffix(".json"), keypoints)

        print(f"{path.stem} --> {out_img.name} + {out_json.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
