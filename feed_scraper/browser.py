from typing import Optional

from playwright.async_api import async_playwright

from feed_scraper.config import BrowserConfig


CHROME_ARGS = [
    "--disable-blink-features=AutomationControlled",
    # Keeps navigator.webdriver from being set, the first thing bot checks look at.

    "--no-sandbox",
    # Needed inside Docker/CI where the Chromium sandbox can't start.

    "--disable-dev-shm-usage",
    # /dev/shm is tiny in containers and Chromium crashes when it fills up.
]


async def open_page(config: Optional[BrowserConfig] = None):
    """
    Launches Playwright, opens Chromium, creates a context and a page.

    Returns:
        pw: Playwright instance
        browser: Chromium browser object
        context: Browser context (cookies, localStorage, the logged in session)
        page: The tab the extraction flows drive
    """
    config = config or BrowserConfig()

    pw = await async_playwright().start()
    browser = await pw.chromium.launch(headless=config.headless, args=CHROME_ARGS)

    context = await browser.new_context(
        storage_state=config.storage_state or None,
        # Saved cookies from save_session.py. Without them most feeds stop
        # after a few screens and redirect to the login page.

        user_agent=config.user_agent,
        viewport=config.viewport,
    )

    page = await context.new_page()
    return pw, browser, context, page


async def close_page(pw, browser, context):
    """
    Closes everything open_page started. Context first so cookie writes
    are flushed, then the Chromium process, then the Playwright driver.
    """
    await context.close()
    await browser.close()
    await pw.stop()
