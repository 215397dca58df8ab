import json
import zipfile

import pytest

import main
from capture_config import CaptureConfig
from capture_errors import BrowserLostError, HistoricalModeError
from main_historical import capture_historical_imagery, read_current_date
from timeline_scanner import TimelineScanner
from ui_locators import FixedCoordinate, TextSearch

HISTORY_BUTTON = (520, 37)


class FakeEarthPage:
    """
    Stands in for EarthPage. The view shows 9000-byte frames until the
    history button is clicked, then 10000-byte frames that change size
    only at the timeline positions listed in frame_sizes.
    """

    def __init__(self, frame_sizes=None, history_at=HISTORY_BUTTON, fail_at=None, lose_at=None):
        self.frame_sizes = frame_sizes or {}
        self.history_at = history_at
        self.fail_at = fail_at
        self.lose_at = lose_at
        self.history_active = False
        self.current_size = 10000
        self.urls = []
        self.keys = []
        self.clicks = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def navigate(self, url):
        self.urls.append(url)

    def await_stable(self, max_wait=10.0):
        pass

    def press_key(self, key):
        self.keys.append(key)

    def viewport_size(self):
        return (1920, 1080)

    def click(self, x, y):
        self.clicks.append((x, y))
        if (x, y) == self.history_at:
            self.history_active = True
        elif self.history_active:
            if x == self.lose_at:
                raise BrowserLostError("chrome not reachable")
            if x == self.fail_at:
                raise TimeoutError("timeline click timed out")
            self.current_size = self.frame_sizes.get(x, self.current_size)

    def screenshot(self, region=None):
        if region is not None:
            return b"crop-%d" % self.current_size
        if not self.history_active:
            return b"p" * 9000
        return b"h" * self.current_size

    def page_source(self):
        return "<html><body>earth</body></html>"

    def close(self):
        self.closed = True


def no_text_ocr(image_bytes, char_whitelist=None):
    return ""


def session_dir(tmp_path):
    (path,) = [p for p in tmp_path.iterdir() if p.is_dir()]
    return path


@pytest.fixture
def config(tmp_path):
    return CaptureConfig(timeline_start_x=400, timeline_end_x=1600, num_points=22,
                         zoom_steps=2, output_root=str(tmp_path))


def test_end_to_end_capture(tmp_path, config):
    positions = TimelineScanner(400, 1600, 22).positions()
    page = FakeEarthPage({
        positions[13]: 11000,
        positions[14]: 12000,
        positions[17]: 13000,
        positions[21]: 14000,
    })

    result = capture_historical_imagery("5.5555,-0.2616", 2019, headless=True, config=config,
                                        page_factory=lambda headless: page, ocr=no_text_ocr)

    out = session_dir(tmp_path)
    assert result == tmp_path / (out.name + ".zip")
    assert out.name.startswith("5_5555__0_2616_")
    assert page.closed
    assert page.keys == ["+", "+"]
    assert page.urls == ["https://earth.google.com/web/@5.5555,-0.2616,250a,35y,0h,0t,0r"]

    metadata = json.loads((out / "metadata.json").read_text())
    assert metadata["status"] == "completed"
    assert metadata["totalSamples"] == 22
    assert metadata["capturedImages"] == 4
    assert metadata["actualYearRange"] == "est_2015 to est_2023"
    assert metadata["targetYearRange"][0] == 2019
    assert [img["estimatedYear"] for img in metadata["images"]] == [2015, 2016, 2019, 2023]

    page_html = (out / "report.html").read_text()
    assert page_html.count('class="card"') == 4
    assert page_html.index("est_2015.png") < page_html.index("est_2023.png")

    for name in ["01_initial_load.png", "02_zoomed_view.png", "03_before_history_click.png",
                 "04_after_history_click.png", "05_baseline.png",
                 "5_5555__0_2616_est_2016.png", "capture_log.txt"]:
        assert (out / name).exists(), name
    assert "Historical mode activated" in (out / "capture_log.txt").read_text()

    with zipfile.ZipFile(result) as zf:
        assert "metadata.json" in zf.namelist()


def test_no_archive_returns_directory(tmp_path, config):
    config.make_archive = False
    result = capture_historical_imagery("5.5555,-0.2616", 2019, config=config,
                                        page_factory=lambda headless: FakeEarthPage(),
                                        ocr=no_text_ocr)
    assert result == session_dir(tmp_path)
    assert not list(tmp_path.glob("*.zip"))


def test_transient_probe_failure_is_skipped(tmp_path, config):
    positions = TimelineScanner(400, 1600, 22).positions()
    page = FakeEarthPage(fail_at=positions[5])
    capture_historical_imagery("5.5555,-0.2616", 2019, config=config,
                               page_factory=lambda headless: page, ocr=no_text_ocr)

    metadata = json.loads((session_dir(tmp_path) / "metadata.json").read_text())
    assert metadata["status"] == "completed"
    assert metadata["totalSamples"] == 21


def test_history_mode_failure(tmp_path, config):
    config.activation_retries = 2
    page = FakeEarthPage(history_at=None)

    with pytest.raises(HistoricalModeError):
        capture_historical_imagery("5.5555,-0.2616", 2019, config=config,
                                   page_factory=lambda headless: page, ocr=no_text_ocr)

    out = session_dir(tmp_path)
    assert page.closed
    assert page.clicks == [HISTORY_BUTTON, HISTORY_BUTTON]
    assert (out / "error_state.png").exists()
    assert "earth" in (out / "error_page_source.html").read_text()
    metadata = json.loads((out / "metadata.json").read_text())
    assert metadata["status"] == "failed"
    assert metadata["capturedImages"] == 0
    assert "did not engage" in metadata["error"]


def test_history_locators_are_cycled(tmp_path, config):
    config.history_locators = [FixedCoordinate(460, 37), FixedCoordinate(520, 37)]
    page = FakeEarthPage()
    capture_historical_imagery("5.5555,-0.2616", 2019, config=config,
                               page_factory=lambda headless: page, ocr=no_text_ocr)
    assert page.clicks[:2] == [(460, 37), (520, 37)]


def test_locator_not_found_uses_a_retry(tmp_path, config, monkeypatch):
    config.history_locators = [TextSearch("Historical")]
    config.activation_retries = 2
    monkeypatch.setattr(TextSearch, "locate", lambda self, page: None)
    page = FakeEarthPage()
    with pytest.raises(HistoricalModeError):
        capture_historical_imagery("5.5555,-0.2616", 2019, config=config,
                                   page_factory=lambda headless: page, ocr=no_text_ocr)
    assert page.clicks == []


def test_browser_loss_keeps_partial_report(tmp_path, config):
    positions = TimelineScanner(400, 1600, 22).positions()
    page = FakeEarthPage({positions[2]: 12000}, lose_at=positions[6])

    with pytest.raises(BrowserLostError):
        capture_historical_imagery("5.5555,-0.2616", 2019, config=config,
                                   page_factory=lambda headless: page, ocr=no_text_ocr)

    out = session_dir(tmp_path)
    metadata = json.loads((out / "metadata.json").read_text())
    assert metadata["status"] == "failed"
    assert metadata["totalSamples"] == 6
    assert metadata["capturedImages"] == 1
    assert page.closed


def test_invalid_location(tmp_path, config):
    with pytest.raises(ValueError):
        capture_historical_imagery("Accra", 2019, config=config,
                                   page_factory=lambda headless: FakeEarthPage())


def test_read_current_date(config):
    page = FakeEarthPage()
    resolution = read_current_date("5.5555,-0.2616", config=config,
                                   page_factory=lambda headless: page,
                                   ocr=lambda image, whitelist=None: "Imagery Jan 19, 2024")
    assert resolution.canonical == "2024-01-19"
    assert page.closed


class TestCommandLine:
    def test_config_from_args(self):
        args = main.build_parser().parse_args([
            "--timeline", "400", "1600", "95",
            "--calibration", "400", "1600", "2000", "2024",
            "--history-locator", "text:Historical",
            "--history-locator", "xy:520,37",
            "--no-zip", "--num-points", "30",
        ])
        config = main.config_from_args(args)
        assert (config.timeline_start_x, config.timeline_end_x, config.timeline_y) == (400, 1600, 95)
        assert config.calibration.start_year == 2000
        assert config.history_locators == [TextSearch("Historical"), FixedCoordinate(520, 37)]
        assert config.num_points == 30
        assert not config.make_archive

    def test_invalid_locator_exits_early(self, capsys):
        assert main.main(["--history-locator", "bogus"]) == 2
        assert "Invalid argument" in capsys.readouterr().err

    def test_failed_date_read_exits_non_zero(self, monkeypatch, capsys):
        def fail(*args, **kwargs):
            raise BrowserLostError("chrome not reachable")
        monkeypatch.setattr(main, "read_current_date", fail)
        assert main.main(["--read-date", "--headless"]) == 1
        assert "chrome not reachable" in capsys.readouterr().err

    def test_failed_capture_exits_non_zero(self, monkeypatch, capsys):
        def fail(*args, **kwargs):
            raise HistoricalModeError("toggle never engaged")
        monkeypatch.setattr(main, "capture_historical_imagery", fail)
        assert main.main(["--headless"]) == 1
        assert "toggle never engaged" in capsys.readouterr().err
