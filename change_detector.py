import logging

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.5


def percent_size_diff(before, after):
    """
    Size difference between two encoded screenshots, in percent.

    The larger buffer is the denominator, so the measure is symmetric.
    Two empty buffers differ by 0%, one empty buffer by 100%.
    """
    larger = max(len(before), len(after))
    if larger == 0:
        return 0.0
    return abs(len(before) - len(after)) / larger * 100


class ChangeDetector:
    """
    Decide whether two full-frame screenshots show different map content.

    This compares PNG byte sizes only, which is a coarse stand-in for a
    visual diff: frames of identical size but different content are missed,
    and compression noise on an unchanged view can register as a change.
    """

    def __init__(self, threshold=DEFAULT_THRESHOLD):
        if threshold < 0:
            raise ValueError("threshold must be a non-negative percentage")
        self.threshold = threshold

    def is_significant_change(self, baseline: bytes, candidate: bytes) -> bool:
        diff = percent_size_diff(baseline, candidate)
        logger.debug("Image size difference: %.2f%%", diff)
        return diff > self.threshold
