"""Behave environment hooks for the Campaigns admin UI smoke test.

Starts one headless Chrome/Chromium for the run and quits it at the end.
The service under test is reached at BASE_URL (env), then the behave
userdata value (-D BASE_URL=...), then http://localhost:8080.
"""

import os
import shutil

from selenium import webdriver
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.chrome.service import Service as ChromeService

BROWSER_CANDIDATES = ("chromium", "chromium-browser", "google-chrome", "chrome")
WAIT_SECONDS = int(os.getenv("WAIT_SECONDS", "10"))


def _find_executable(env_name: str, names) -> str | None:
    """Return the path from env_name if it exists, else the first match on PATH"""
    configured = os.getenv(env_name)
    if configured and os.path.exists(configured):
        return configured
    for name in names:
        path = shutil.which(name)
        if path:
            return path
    return None


def before_all(context):
    """Start a headless browser and remember the base URL."""
    context.base_url = (
        os.getenv("BASE_URL")
        or context.config.userdata.get("BASE_URL")
        or "http://localhost:8080"
    ).rstrip("/")

    options = ChromeOptions()
    for argument in ("--headless=new", "--no-sandbox", "--disable-dev-shm-usage"):
        options.add_argument(argument)
    browser_path = _find_executable("CHROME_BIN", BROWSER_CANDIDATES)
    if browser_path:
        options.binary_location = browser_path

    # without a local chromedriver, Selenium Manager resolves one
    driver_path = _find_executable("CHROMEDRIVER", ("chromedriver",))
    if driver_path:
        context.browser = webdriver.Chrome(
            service=ChromeService(executable_path=driver_path), options=options
        )
    else:
        context.browser = webdriver.Chrome(options=options)
    context.browser.implicitly_wait(WAIT_SECONDS)
    context.browser.set_window_size(1400, 1000)


def after_all(context):
    """Shut down the browser if it was started."""
    browser = getattr(context, "browser", None)
    if browser:
        browser.quit()
