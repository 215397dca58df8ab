import math
import logging

from capture_errors import BrowserLostError
from capture_models import Sample
from change_detector import ChangeDetector
from date_resolver import DateResolver

logger = logging.getLogger(__name__)


class TimelineScanner:
    """
    Walk the timeline from start_x to end_x in num_points steps.

    Every position is probed and recorded. A frame is unique when it differs
    from the rolling baseline, which starts as the screenshot taken before
    the scan and moves to each new unique frame, so a run of gradual
    changes is picked up rather than just the first big jump.
    """

    def __init__(self, start_x, end_x, num_points, detector=None, resolver=None):
        if num_points < 1:
            raise ValueError("num_points must be at least 1")
        if end_x <= start_x:
            raise ValueError("end_x must be greater than start_x")
        if end_x - start_x < num_points:
            # Steps under one pixel would probe the same pixel twice
            raise ValueError("timeline range must be at least num_points pixels wide")
        self.start_x = start_x
        self.end_x = end_x
        self.num_points = num_points
        self.detector = detector or ChangeDetector()
        self.resolver = resolver or DateResolver()

    @property
    def step(self):
        return (self.end_x - self.start_x) / self.num_points

    def positions(self):
        return [math.floor(self.start_x + i * self.step + 0.5) for i in range(self.num_points)]

    def evaluate(self, baseline, index, pixel_x, frame_bytes, date_region_bytes):
        """Build the sample for one probe and return it with the next baseline."""
        resolution = self.resolver.resolve(pixel_x, date_region_bytes)
        is_unique = self.detector.is_significant_change(baseline, frame_bytes)
        sample = Sample(
            sequence_index=index,
            pixel_x=pixel_x,
            estimated_year=resolution.estimated_year,
            frame_bytes=frame_bytes,
            date_region_bytes=date_region_bytes,
            resolved_date=resolution.canonical if resolution.from_ocr else None,
            raw_ocr_text=resolution.raw_ocr_text,
            is_unique_frame=is_unique,
        )
        return sample, (frame_bytes if is_unique else baseline)

    def scan(self, probe, baseline, session=None):
        """
        Probe every position and return the samples in scan order.

        probe(x) must return (frame_bytes, date_region_bytes). A probe that
        raises is logged and skipped; BrowserLostError fails the session and
        propagates, leaving the samples gathered so far on the session.
        """
        samples = []
        for index, pixel_x in enumerate(self.positions(), start=1):
            logger.info("Exploring position %d/%d at x=%d", index, self.num_points, pixel_x)
            try:
                frame_bytes, date_region_bytes = probe(pixel_x)
            except BrowserLostError as e:
                logger.error("Browser lost at position %d (x=%d): %s", index, pixel_x, e)
                if session is not None:
                    session.fail(e)
                raise
            except Exception as e:
                logger.warning("Probe failed at position %d (x=%d), skipping: %s", index, pixel_x, e)
                continue

            sample, baseline = self.evaluate(baseline, index, pixel_x, frame_bytes, date_region_bytes)
            if sample.is_unique_frame:
                logger.info("Found unique image at position %d (%s)", index, sample.date_key)
            samples.append(sample)
            if session is not None:
                session.add_sample(sample)
        return samples
