import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


def sanitize_label(label):
    """Lower-case a location label and replace anything outside [a-z0-9_]."""
    return re.sub(r"[^a-z0-9_]", "_", str(label).lower())


def parse_coordinates(location):
    """Parse 'lat,lon' into a float pair."""
    try:
        latitude, longitude = (float(part) for part in str(location).split(","))
    except ValueError:
        raise ValueError(f"Location must look like 'latitude,longitude', got {location!r}")
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise ValueError(f"Coordinates out of range: {location!r}")
    return latitude, longitude


@dataclass
class Sample:
    sequence_index: int
    pixel_x: int
    estimated_year: int
    frame_bytes: bytes = field(repr=False)
    date_region_bytes: bytes = field(repr=False)
    resolved_date: Optional[str] = None
    raw_ocr_text: Optional[str] = None
    is_unique_frame: bool = False

    @property
    def date_key(self):
        return self.resolved_date or f"est_{self.estimated_year}"


@dataclass
class CaptureSession:
    """One scan-and-report run over one location."""
    location_label: str
    coordinates: Tuple[float, float]
    target_year_range: Tuple[int, int]
    output_dir: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    samples: List[Sample] = field(default_factory=list)
    status: str = RUNNING
    error: Optional[str] = None

    @property
    def safe_label(self):
        return sanitize_label(self.location_label)

    @property
    def duration(self):
        """Seconds between start and end, or None while still running."""
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def unique_samples(self):
        return [s for s in self.samples if s.is_unique_frame]

    def add_sample(self, sample):
        self.samples.append(sample)

    def finish(self):
        self.ended_at = datetime.now()
        if self.status == RUNNING:
            self.status = COMPLETED

    def fail(self, error):
        self.status = FAILED
        self.error = str(error)
        self.ended_at = datetime.now()
