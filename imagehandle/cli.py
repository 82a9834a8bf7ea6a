import argparse
import sys

from .config import configure_logging
from .errors import ImageError
from .filters import Filter
from .image import FLIP_DIRECTIONS, Image


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Transform a PNG, JPEG or GIF image in place or into a new file")
    parser.add_argument('--input', '-i', required=True, help="Input image path")
    parser.add_argument('--output', '-o', help="Output image path (defaults to overwriting the input)")
    parser.add_argument('--check', action='store_true',
                        help="Only report whether the input is an acceptable image")
    parser.add_argument('--quality', '-q', type=int, help="PNG compression 0-9 or JPEG quality 0-100")
    parser.add_argument('--flip', choices=sorted(FLIP_DIRECTIONS), help="Flip direction")
    parser.add_argument('--crop', type=int, nargs='+', metavar='N', help="WIDTH HEIGHT [LEFT TOP]")
    parser.add_argument('--scale', type=int, nargs='+', metavar='N', help="WIDTH [HEIGHT]")
    parser.add_argument('--rotate', type=float, metavar='DEGREES', help="Clockwise rotation")
    parser.add_argument('--flatten', type=int, nargs='*', metavar='C', help="Flatten onto [RED GREEN BLUE]")
    parser.add_argument('--filter', nargs='+', metavar='ARG', help="NAME [ARGS...], e.g. brightness 20")
    parser.add_argument('--opacity', type=int, metavar='PERCENT', help="Opacity 0-100")
    parser.add_argument('--watermark', nargs='+', metavar='ARG', help="FILE [LEFT TOP]")
    parser.add_argument('--resolution', type=int, nargs=2, metavar=('H', 'V'), help="DPI metadata")
    parser.add_argument('--data-uri', action='store_true', help="Print a data URI instead of saving")
    parser.add_argument('--verbose', '-v', action='store_true', help="Log debug output")
    return parser


def _check_counts(parser, args):
    if args.crop is not None and len(args.crop) not in (2, 4):
        parser.error("--crop takes WIDTH HEIGHT [LEFT TOP]")
    if args.scale is not None and len(args.scale) not in (1, 2):
        parser.error("--scale takes WIDTH [HEIGHT]")
    if args.flatten is not None and len(args.flatten) not in (0, 3):
        parser.error("--flatten takes no values or RED GREEN BLUE")
    if args.watermark is not None and len(args.watermark) not in (1, 3):
        parser.error("--watermark takes FILE [LEFT TOP]")
    if args.filter is not None and args.filter[0].upper() not in Filter.__members__:
        parser.error(f"Unknown filter: {args.filter[0]}. Available: {[f.name.lower() for f in Filter]}")


def apply_operations(image: Image, args) -> Image:
    """Apply the requested transforms in their fixed order."""
    if args.quality is not None:
        image.set_quality(args.quality)
    if args.flip:
        image.flip(args.flip)
    if args.crop:
        image.crop(*args.crop)
    if args.scale:
        image.scale(*args.scale)
    if args.rotate is not None:
        image.rotate(args.rotate)
    if args.flatten is not None:
        image.flatten(*args.flatten)
    if args.filter:
        name, *values = args.filter
        image.filter(Filter[name.upper()], *values)
    if args.opacity is not None:
        image.opacity(args.opacity)
    if args.watermark:
        path, *offsets = args.watermark
        with Image(path) as mark:
            image.watermark(mark, *(int(v) for v in offsets))
    if args.resolution:
        image.set_resolution(*args.resolution)
    return image


def main():
    parser = build_parser()
    args = parser.parse_args()
    _check_counts(parser, args)
    configure_logging(args.verbose)

    if args.check:
        acceptable = Image.is_acceptable(args.input)
        print(f"{args.input}: {'acceptable' if acceptable else 'not acceptable'}")
        sys.exit(0 if acceptable else 1)

    try:
        with Image(args.input) as image:
            if not args.data_uri:
                print(f"Processing {args.input}...")
            apply_operations(image, args)

            if args.data_uri:
                print(image.to_data_uri())
                return

            output = args.output or str(image.source_path)
            if not image.save(output):
                print(f"Error: could not save {output}", file=sys.stderr)
                sys.exit(1)
            print(f"Saved to {output}")

    except (ImageError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
