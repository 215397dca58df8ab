import io
import time
import logging
from functools import wraps

from PIL import Image
from selenium import webdriver
from selenium.common.exceptions import InvalidSessionIdException, NoSuchWindowException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.keys import Keys

from capture_errors import BrowserLostError

logger = logging.getLogger(__name__)

EARTH_URL = "https://earth.google.com/web/@{latitude},{longitude},{altitude}a,35y,0h,0t,0r"

# Named keys accepted by press_key; anything else is sent as typed text
KEY_NAMES = {
    "ArrowLeft": Keys.ARROW_LEFT,
    "ArrowRight": Keys.ARROW_RIGHT,
    "ArrowUp": Keys.ARROW_UP,
    "ArrowDown": Keys.ARROW_DOWN,
    "Enter": Keys.ENTER,
    "Escape": Keys.ESCAPE,
}


def earth_url(latitude, longitude, altitude):
    return EARTH_URL.format(latitude=latitude, longitude=longitude, altitude=altitude)


def _session_guard(method):
    """Re-raise a lost Selenium session as BrowserLostError."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (InvalidSessionIdException, NoSuchWindowException) as e:
            raise BrowserLostError(f"browser session lost during {method.__name__}: {e}") from e
    return wrapper


class EarthPage:
    """
    A single Chrome window driving Google Earth Web.

    Use as a context manager so the driver is quit on every exit path.
    """

    def __init__(self, driver, page_load_timeout=60):
        self.driver = driver
        self.driver.set_page_load_timeout(page_load_timeout)

    @classmethod
    def launch(cls, headless=False, viewport=(1920, 1080), driver_path=None, page_load_timeout=60):
        chrome_options = Options()
        if headless:
            chrome_options.add_argument("--headless=new")
        chrome_options.add_argument(f"--window-size={viewport[0]},{viewport[1]}")
        chrome_options.add_argument("--no-sandbox")
        chrome_options.add_argument("--disable-dev-shm-usage")
        service = Service(executable_path=driver_path) if driver_path else Service()
        logger.info("Launching Chrome (headless=%s, viewport=%sx%s)", headless, *viewport)
        driver = webdriver.Chrome(service=service, options=chrome_options)
        return cls(driver, page_load_timeout=page_load_timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @_session_guard
    def navigate(self, url):
        logger.info("Navigating to %s", url)
        self.driver.get(url)

    @_session_guard
    def viewport_size(self):
        return tuple(self.driver.execute_script("return [window.innerWidth, window.innerHeight];"))

    @_session_guard
    def screenshot(self, region=None):
        """
        PNG bytes of the viewport, or of region=(x, y, width, height) in
        viewport pixels.
        """
        png = self.driver.get_screenshot_as_png()
        if region is None:
            return png

        image = Image.open(io.BytesIO(png))
        # Map viewport pixels onto the screenshot, which may be scaled
        viewport_width, viewport_height = self.viewport_size()
        sx = image.size[0] / viewport_width
        sy = image.size[1] / viewport_height
        x, y, width, height = region
        crop = image.crop((round(x * sx), round(y * sy),
                           round((x + width) * sx), round((y + height) * sy)))
        buffer = io.BytesIO()
        crop.save(buffer, format="PNG")
        return buffer.getvalue()

    @_session_guard
    def click(self, x, y):
        """Click at viewport coordinates, then move the pointer back to the origin."""
        action = ActionChains(self.driver)
        action.move_by_offset(x, y).click().move_by_offset(-x, -y).perform()

    @_session_guard
    def press_key(self, key):
        ActionChains(self.driver).send_keys(KEY_NAMES.get(key, key)).perform()

    @_session_guard
    def evaluate(self, script, *args):
        return self.driver.execute_script(script, *args)

    @_session_guard
    def page_source(self):
        return self.driver.page_source

    @_session_guard
    def await_stable(self, max_wait=10.0, interval=0.5):
        """
        Wait until the URL stops changing, then settle for one more interval.

        Google Earth rewrites the URL while the camera is still moving.
        """
        deadline = time.monotonic() + max_wait
        previous_url = self.driver.current_url
        time.sleep(interval)
        while time.monotonic() < deadline:
            current_url = self.driver.current_url
            if current_url == previous_url:
                break
            previous_url = current_url
            time.sleep(interval)
        time.sleep(interval)

    def close(self):
        try:
            self.driver.quit()
        except Exception as e:
            logger.warning("Error while closing the browser: %s", e)
        else:
            logger.info("Browser closed")
