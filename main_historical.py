import sys
import logging
from datetime import datetime
from pathlib import Path

from capture_config import CaptureConfig
from capture_errors import HistoricalModeError
from capture_models import CaptureSession, FAILED, parse_coordinates
from change_detector import ChangeDetector
from date_resolver import DateResolver, tesseract_ocr
from earth_browser import EarthPage, earth_url
from session_report import SessionReport
from timeline_scanner import TimelineScanner

logger = logging.getLogger(__name__)

LOG_FILE = "capture_log.txt"
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"


def attach_session_log(output_dir):
    """
    Send log records to <output_dir>/capture_log.txt and stdout.

    Returns a callable that removes the handlers again.
    """
    root = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = logging.FileHandler(Path(output_dir) / LOG_FILE, encoding="utf-8")
    stream_handler = logging.StreamHandler(sys.stdout)
    handlers = [file_handler, stream_handler]
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    previous_level = root.level
    if root.level == logging.NOTSET or root.level > logging.INFO:
        root.setLevel(logging.INFO)

    def detach():
        for handler in handlers:
            root.removeHandler(handler)
            handler.close()
        root.setLevel(previous_level)
    return detach


class StageShots:
    """Numbered full-page screenshots: 01_initial_load.png, 02_zoomed_view.png..."""

    def __init__(self, output_dir):
        self.output_dir = Path(output_dir)
        self.count = 0

    def save(self, page, stage):
        self.count += 1
        png = page.screenshot()
        (self.output_dir / f"{self.count:02d}_{stage}.png").write_bytes(png)
        return png


def _default_page_factory(config):
    def launch(headless):
        return EarthPage.launch(headless=headless, viewport=config.viewport,
                                driver_path=config.driver_path,
                                page_load_timeout=config.page_load_timeout)
    return launch


def open_location(page, latitude, longitude, config, shots=None):
    page.navigate(earth_url(latitude, longitude, config.altitude))
    if shots:
        shots.save(page, "initial_load")

    logger.info("Waiting for Google Earth to initialize...")
    page.await_stable(config.load_wait)

    if config.zoom_steps:
        logger.info("Zooming in %d steps", config.zoom_steps)
        for _ in range(config.zoom_steps):
            page.press_key("+")
            page.await_stable(config.zoom_wait)
    if shots:
        shots.save(page, "zoomed_view")


def activate_historical_mode(page, locators, detector, retries, wait, shots):
    """
    Click the history toggle until the view visibly changes.

    Locators are tried in turn, cycling when there are fewer locators than
    retries. Raises HistoricalModeError if no attempt changes the view.
    """
    for attempt in range(retries):
        locator = locators[attempt % len(locators)]
        before = shots.save(page, "before_history_click")

        position = locator.locate(page)
        if position is None:
            logger.warning("History control not found with %s (attempt %d/%d)",
                           locator, attempt + 1, retries)
            continue

        logger.info("Clicking history control at %s", position)
        page.click(*position)
        page.await_stable(wait)
        after = shots.save(page, "after_history_click")

        if detector.is_significant_change(before, after):
            logger.info("Historical mode activated")
            return position
        logger.warning("No visible change after clicking %s (attempt %d/%d)",
                       position, attempt + 1, retries)

    raise HistoricalModeError(
        f"Historical imagery did not engage after {retries} attempts; "
        f"check the history locator against {shots.output_dir}"
    )


def make_probe(page, config, date_region):
    def probe(pixel_x):
        page.click(pixel_x, config.timeline_y)
        page.await_stable(config.action_wait)
        return page.screenshot(), page.screenshot(date_region)
    return probe


def save_diagnostics(page, output_dir):
    output_dir = Path(output_dir)
    try:
        (output_dir / "error_state.png").write_bytes(page.screenshot())
        (output_dir / "error_page_source.html").write_text(page.page_source(), encoding="utf-8")
        logger.info("Error state information saved")
    except Exception as e:
        logger.error("Couldn't save diagnostic information: %s", e)


def _run_capture(page, session, config, scanner, detector, shots):
    latitude, longitude = session.coordinates
    open_location(page, latitude, longitude, config, shots)

    activate_historical_mode(page, list(config.history_locators), detector,
                             config.activation_retries, config.action_wait, shots)

    logger.info("Starting timeline exploration...")
    baseline = shots.save(page, "baseline")
    date_region = config.date_region(page.viewport_size()[1])
    scanner.scan(make_probe(page, config, date_region), baseline, session)
    logger.info("Found %d unique historical images out of %d samples",
                len(session.unique_samples), len(session.samples))


def capture_historical_imagery(location, start_year, headless=False, config=None,
                               page_factory=None, ocr=tesseract_ocr):
    """
    Capture every distinct historical image of `location` ('lat,lon').

    Returns the zip archive path, or the output directory when no archive
    was made. Any unrecovered error is re-raised after the partial report
    and the error diagnostics have been written.
    """
    config = config or CaptureConfig()
    coordinates = parse_coordinates(location)
    session = CaptureSession(location, coordinates, (start_year, datetime.now().year))

    timestamp = session.started_at.strftime("%Y-%m-%dT%H-%M-%S")
    output_dir = Path(config.output_root) / f"{session.safe_label}_{timestamp}"
    output_dir.mkdir(parents=True, exist_ok=True)
    session.output_dir = str(output_dir)
    detach_log = attach_session_log(output_dir)

    detector = ChangeDetector(config.change_threshold)
    resolver = DateResolver(config.calibration, ocr=ocr, char_whitelist=config.ocr_whitelist,
                            show_failed_crops=config.show_failed_crops)
    scanner = TimelineScanner(config.timeline_start_x, config.timeline_end_x,
                              config.num_points, detector, resolver)
    report = SessionReport(session, scanner.start_x, scanner.end_x, config.calibration)
    shots = StageShots(output_dir)
    page_factory = page_factory or _default_page_factory(config)

    logger.info("Starting historical imagery capture for %s from %d", location, start_year)
    logger.info("Output directory: %s", output_dir)
    try:
        with page_factory(headless) as page:
            try:
                _run_capture(page, session, config, scanner, detector, shots)
            except Exception as e:
                logger.error("Error during capture: %s", e)
                save_diagnostics(page, output_dir)
                raise

        session.finish()
        report.write()
        archive = report.archive() if config.make_archive else None
        logger.info("Capture complete in %.1fs", session.duration)
        return archive or output_dir
    except Exception as e:
        if session.status != FAILED:
            session.fail(e)
        try:
            report.write()
        except OSError as write_error:
            logger.error("Couldn't write the partial report: %s", write_error)
        raise
    finally:
        detach_log()


def read_current_date(location, headless=True, config=None, page_factory=None, ocr=tesseract_ocr):
    """Read the date label shown for `location` without entering historical mode."""
    config = config or CaptureConfig()
    latitude, longitude = parse_coordinates(location)
    resolver = DateResolver(config.calibration, ocr=ocr, char_whitelist=config.ocr_whitelist,
                            show_failed_crops=config.show_failed_crops)
    page_factory = page_factory or _default_page_factory(config)

    with page_factory(headless) as page:
        open_location(page, latitude, longitude, config)
        crop = page.screenshot(config.date_region(page.viewport_size()[1]))
    # The live imagery is the newest, at the right end of the timeline
    return resolver.resolve(config.calibration.end_x, crop)
