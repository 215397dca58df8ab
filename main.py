import sys
import logging
import argparse

from capture_config import CaptureConfig
from date_resolver import Calibration
from main_historical import capture_historical_imagery, read_current_date, LOG_FORMAT
from ui_locators import parse_locator


def build_parser():
    parser = argparse.ArgumentParser(
        description='Capture Google Earth historical imagery for a location.')
    parser.add_argument('--location', default='5.55551247,-0.26162416',
                        help="Coordinates as 'latitude,longitude'")
    parser.add_argument('--start-year', type=int, default=2019,
                        help='First year of interest (informational)')
    parser.add_argument('--headless', action='store_true', help='Run Chrome without a window')
    parser.add_argument('--read-date', action='store_true',
                        help='Only read the date of the current imagery and exit')
    parser.add_argument('--num-points', type=int, default=20, help='Timeline positions to probe')
    parser.add_argument('--timeline', type=int, nargs=3, metavar=('START_X', 'END_X', 'Y'),
                        help='Pixel bounds and height of the timeline')
    parser.add_argument('--calibration', type=int, nargs=4,
                        metavar=('START_X', 'END_X', 'START_YEAR', 'END_YEAR'),
                        help='Timeline pixel to year calibration')
    parser.add_argument('--history-locator', action='append', dest='history_locators',
                        help="History toggle: 'xy:520,37', 'text:Historical' or 'css:<selector>'")
    parser.add_argument('--threshold', type=float, default=0.5,
                        help='Percent size difference that counts as a new image')
    parser.add_argument('--output', default='output', help='Root folder for session output')
    parser.add_argument('--no-zip', action='store_true', help='Skip the zip archive')
    parser.add_argument('--driver-path', help='Path to chromedriver')
    parser.add_argument('--show-failed-crops', action='store_true',
                        help='Plot date crops that OCR could not read')
    parser.add_argument('--verbose', action='store_true', help='Log image size comparisons')
    return parser


def config_from_args(args):
    config = CaptureConfig(
        num_points=args.num_points,
        change_threshold=args.threshold,
        output_root=args.output,
        make_archive=not args.no_zip,
        driver_path=args.driver_path,
        show_failed_crops=args.show_failed_crops,
    )
    if args.timeline:
        config.timeline_start_x, config.timeline_end_x, config.timeline_y = args.timeline
    if args.calibration:
        config.calibration = Calibration(*args.calibration)
    if args.history_locators:
        config.history_locators = [parse_locator(value) for value in args.history_locators]
    return config


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Invalid argument: {e}", file=sys.stderr)
        return 2

    level = logging.DEBUG if args.verbose else logging.INFO
    if args.read_date:
        logging.basicConfig(level=level, format=LOG_FORMAT)
        try:
            resolution = read_current_date(args.location, headless=args.headless, config=config)
        except Exception as e:
            print(f"Reading the imagery date failed: {e}", file=sys.stderr)
            return 1
        print("Date found:", resolution.canonical)
        return 0

    logging.getLogger().setLevel(level)
    try:
        result = capture_historical_imagery(args.location, args.start_year,
                                            headless=args.headless, config=config)
    except Exception as e:
        print(f"Capture process failed: {e}", file=sys.stderr)
        return 1

    print("Capture completed:", result)
    return 0


if __name__ == '__main__':
    sys.exit(main())
