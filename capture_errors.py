class CaptureError(Exception):
    """Base class for errors that end a capture session."""


class HistoricalModeError(CaptureError):
    """The historical imagery toggle never visibly engaged."""


class BrowserLostError(CaptureError):
    """The browser session went away in the middle of a scan."""
