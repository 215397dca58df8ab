import io
import re
import math
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

import pytesseract
import matplotlib.pyplot as plt
from PIL import Image, ImageEnhance, ImageFilter

logger = logging.getLogger(__name__)

DEFAULT_WHITELIST = (
    "0123456789/ ,"
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
)

MONTHS = {
    "Jan": 1, "Feb": 2, "Mar": 3, "Apr": 4, "May": 5, "Jun": 6,
    "Jul": 7, "Aug": 8, "Sep": 9, "Oct": 10, "Nov": 11, "Dec": 12,
}

# Tried in order, first parseable match wins
OLDER_SLASH_DATE = re.compile(r"older\s*(\d{1,2})/(\d{1,2})/(\d{4})", re.IGNORECASE)
SLASH_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
MONTH_NAME_DATE = re.compile(r"([A-Z][a-z]{2})\s+(\d{1,2}),\s*(\d{4})")


@dataclass(frozen=True)
class Calibration:
    """Maps timeline pixels to years. Values are measured per UI version."""
    start_x: float = 400
    end_x: float = 1600
    start_year: int = 2002
    end_year: int = 2024

    def __post_init__(self):
        if self.end_x <= self.start_x:
            raise ValueError("calibration end_x must be greater than start_x")
        if self.end_year <= self.start_year:
            raise ValueError("calibration end_year must be greater than start_year")

    @property
    def pixels_per_year(self) -> float:
        return (self.end_x - self.start_x) / (self.end_year - self.start_year)


@dataclass(frozen=True)
class DateResolution:
    canonical: str
    estimated_year: int
    raw_ocr_text: Optional[str]
    from_ocr: bool


def estimate_year(pixel_x, calibration=Calibration()):
    # Half-up rounding keeps the mapping monotonic at .5 boundaries
    offset = (pixel_x - calibration.start_x) / calibration.pixels_per_year
    return calibration.start_year + math.floor(offset + 0.5)


def _to_iso(year, month, day):
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def parse_ocr_date(text):
    """
    Find a date in OCR output and return it as 'YYYY-MM-DD'.

    Recognizes 'older 3/20/2016', '3/20/2016' and 'Jan 19, 2024'.
    Returns None when nothing in the text is a real calendar date.
    """
    if not text:
        return None

    for pattern in (OLDER_SLASH_DATE, SLASH_DATE):
        match = pattern.search(text)
        if match:
            month, day, year = match.groups()
            iso = _to_iso(year, month, day)
            if iso:
                return iso

    match = MONTH_NAME_DATE.search(text)
    if match and match.group(1) in MONTHS:
        month_name, day, year = match.groups()
        return _to_iso(year, MONTHS[month_name], day)
    return None


def preprocess_for_ocr(image, scale=3):
    # Small UI text reads better enlarged, in grayscale, with extra contrast
    width, height = image.size
    image = image.convert("L").resize((width * scale, height * scale))
    image = ImageEnhance.Contrast(image).enhance(2.5)
    return image.filter(ImageFilter.SHARPEN)


def tesseract_ocr(image_bytes, char_whitelist=None):
    """Run tesseract over a PNG screenshot crop and return the raw text."""
    image = preprocess_for_ocr(Image.open(io.BytesIO(image_bytes)))
    config = "--psm 7"
    if char_whitelist:
        # tesseract splits config on whitespace, so the space has to be quoted
        config += f' -c tessedit_char_whitelist="{char_whitelist}"'
    return pytesseract.image_to_string(image, config=config)


class DateResolver:
    """
    Label a sample with the best date available.

    An OCR'd date from the on-screen label always wins; the year estimated
    from the timeline position is the fallback, rendered as 'est_YYYY'.
    """

    def __init__(self, calibration=None, ocr=tesseract_ocr,
                 char_whitelist=DEFAULT_WHITELIST, show_failed_crops=False):
        self.calibration = calibration or Calibration()
        self.ocr = ocr
        self.char_whitelist = char_whitelist
        self.show_failed_crops = show_failed_crops

    def estimate_year(self, pixel_x) -> int:
        return estimate_year(pixel_x, self.calibration)

    def read_text(self, date_region_bytes) -> Optional[str]:
        if self.ocr is None or not date_region_bytes:
            return None
        try:
            text = self.ocr(date_region_bytes, self.char_whitelist)
        except Exception as e:
            logger.warning("OCR failed, falling back to the timeline estimate: %s", e)
            return None
        text = " ".join((text or "").split())
        return text or None

    def resolve(self, pixel_x, date_region_bytes) -> DateResolution:
        estimated = self.estimate_year(pixel_x)
        raw_text = self.read_text(date_region_bytes)
        ocr_date = parse_ocr_date(raw_text)

        if ocr_date:
            logger.info("Date found: %s (OCR text %r)", ocr_date, raw_text)
            return DateResolution(ocr_date, estimated, raw_text, True)

        logger.info("Date not found in OCR text %r, using est_%d", raw_text, estimated)
        if self.show_failed_crops and date_region_bytes:
            try:
                self._show_crop(date_region_bytes, raw_text)
            except Exception as e:
                logger.warning("Could not display the date crop: %s", e)
        return DateResolution(f"est_{estimated}", estimated, raw_text, False)

    def _show_crop(self, date_region_bytes, raw_text):
        plt.figure(figsize=(10, 2))
        plt.imshow(Image.open(io.BytesIO(date_region_bytes)))
        plt.axis("off")
        plt.title("Date not found. Extracted Text: " + (raw_text or ""))
        plt.show()
