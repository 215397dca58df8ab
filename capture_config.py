from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from date_resolver import Calibration, DEFAULT_WHITELIST
from ui_locators import FixedCoordinate


@dataclass
class CaptureConfig:
    """
    Everything about a capture run that depends on the Google Earth UI.

    Pixel positions were measured on a 1920x1080 viewport and move whenever
    the interface changes.
    """
    viewport: Tuple[int, int] = (1920, 1080)
    altitude: float = 250  # lower is more zoomed in
    zoom_steps: int = 8
    driver_path: Optional[str] = None
    page_load_timeout: float = 60

    # Upper bounds handed to await_stable, in seconds
    load_wait: float = 15.0
    zoom_wait: float = 1.0
    action_wait: float = 4.0

    history_locators: Sequence = field(default_factory=lambda: [FixedCoordinate(520, 37)])
    activation_retries: int = 3

    timeline_start_x: int = 1200
    timeline_end_x: int = 1600
    timeline_y: int = 90
    num_points: int = 20

    # Date label sits this far from the left edge, in the bottom strip
    date_region_x: int = 100
    date_region_width: int = 250
    date_region_height: int = 35

    change_threshold: float = 0.5
    calibration: Calibration = field(default_factory=Calibration)
    ocr_whitelist: str = DEFAULT_WHITELIST
    show_failed_crops: bool = False

    output_root: str = "output"
    make_archive: bool = True

    def __post_init__(self):
        if self.activation_retries < 1:
            raise ValueError("activation_retries must be at least 1")
        if not self.history_locators:
            raise ValueError("at least one history locator is required")

    def date_region(self, viewport_height):
        return (self.date_region_x, viewport_height - self.date_region_height,
                self.date_region_width, self.date_region_height)
