"""Command-line pixel sorter.

Usage:
    pngsort -i in.png -o out.png --sort-range row-major --sort-channel r,g,b
    pngsort -i in.png -o out.png --config '{"sort_range": "Row", "sort_channel": ["R"]}'
"""

import argparse
import logging
import sys
from pathlib import Path

from imaging.png import ImageFormatError, probe_png
from imaging.pngsort import sort_png
from sorting.config import RangeMode, TieMode, kebab_name, parse_config
from sorting.errors import ConfigError, ShapeError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pngsort", description="Sort the pixels of a PNG image"
    )
    parser.add_argument("-i", "--input", required=True, help="Input PNG path")
    parser.add_argument("-o", "--output", required=True, help="Output PNG path")
    parser.add_argument(
        "--config",
        help="JSON sort config; overrides the individual sort options",
    )
    parser.add_argument(
        "--descending", action="store_true", help="Largest key first"
    )
    parser.add_argument(
        "--sort-range",
        default="row",
        choices=[kebab_name(m.value) for m in RangeMode],
        help="How the image is split into independently sorted lines",
    )
    parser.add_argument(
        "--sort-mode",
        choices=[kebab_name(m.value) for m in TieMode],
        help="Key/tie-break mode (default: untied; not allowed for grayscale)",
    )
    parser.add_argument(
        "--sort-channel",
        help="Comma-separated channel priority list, e.g. r,g,b "
        "(default: r,g,b for color images, l for grayscale)",
    )
    parser.add_argument(
        "--workers", type=int, default=1, help="Threads for per-line sorting"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _raw_config(args: argparse.Namespace, grayscale_hint: bool) -> dict:
    raw = {"descending": args.descending, "sort_range": args.sort_range}
    if args.sort_mode:
        raw["sort_mode"] = args.sort_mode
    if args.sort_channel:
        raw["sort_channel"] = [c.strip() for c in args.sort_channel.split(",") if c.strip()]
    elif not grayscale_hint:
        raw["sort_channel"] = ["R", "G", "B"]
    return raw


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        data = Path(args.input).read_bytes()
    except OSError as e:
        print(f"pngsort: cannot read {args.input}: {e.strerror}", file=sys.stderr)
        return 1

    try:
        if args.config:
            config = parse_config(args.config)
        else:
            header = probe_png(data)
            grayscale = header.get("mode") in ("L", "LA")
            config = parse_config(_raw_config(args, grayscale))
        output = sort_png(config, data, workers=args.workers)
    except (ConfigError, ShapeError, ImageFormatError) as e:
        print(f"pngsort: {e}", file=sys.stderr)
        return 2

    try:
        Path(args.output).write_bytes(output)
    except OSError as e:
        print(f"pngsort: cannot write {args.output}: {e.strerror}", file=sys.stderr)
        return 1

    logger.info("Wrote %s (%d bytes)", args.output, len(output))
    return 0


if __name__ == "__main__":
    sys.exit(main())
