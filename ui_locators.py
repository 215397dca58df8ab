import io
import logging
from dataclasses import dataclass

import pytesseract
from PIL import Image

logger = logging.getLogger(__name__)

_ELEMENT_CENTER_JS = """
var el = document.querySelector(arguments[0]);
if (!el) { return null; }
var r = el.getBoundingClientRect();
return [r.left + r.width / 2, r.top + r.height / 2];
"""


@dataclass(frozen=True)
class FixedCoordinate:
    x: int
    y: int

    def locate(self, page):
        return (self.x, self.y)


@dataclass(frozen=True)
class TextSearch:
    """Find a word on screen with OCR and return its centre in viewport pixels."""
    pattern: str

    def locate(self, page):
        screenshot = Image.open(io.BytesIO(page.screenshot()))
        ocr_data = pytesseract.image_to_data(screenshot, output_type=pytesseract.Output.DICT)

        for i, text in enumerate(ocr_data["text"]):
            if self.pattern in text:
                x = ocr_data["left"][i] + ocr_data["width"][i] / 2
                y = ocr_data["top"][i] + ocr_data["height"][i] / 2
                # Screenshots can be larger than the viewport on HiDPI displays
                viewport_width, viewport_height = page.viewport_size()
                return (round(x / screenshot.size[0] * viewport_width),
                        round(y / screenshot.size[1] * viewport_height))
        logger.info("Text %r not found on screen", self.pattern)
        return None


@dataclass(frozen=True)
class SelectorSearch:
    selector: str

    def locate(self, page):
        center = page.evaluate(_ELEMENT_CENTER_JS, self.selector)
        if not center:
            logger.info("No element matches %r", self.selector)
            return None
        return (round(center[0]), round(center[1]))


def parse_locator(value):
    """
    Build a locator from 'xy:520,37', 'text:Imagery' or 'css:<selector>'.
    """
    kind, sep, arg = str(value).partition(":")
    if not sep or not arg:
        raise ValueError(f"Locator must look like 'kind:value', got {value!r}")
    kind = kind.strip().lower()
    if kind == "xy":
        try:
            x, y = (int(part) for part in arg.split(","))
        except ValueError:
            raise ValueError(f"Fixed coordinate must be 'xy:X,Y', got {value!r}")
        return FixedCoordinate(x, y)
    if kind == "text":
        return TextSearch(arg)
    if kind == "css":
        return SelectorSearch(arg)
    raise ValueError(f"Unknown locator kind {kind!r}; expected xy, text or css")
