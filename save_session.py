import argparse
import asyncio

from playwright.async_api import async_playwright

from feed_scraper.browser import CHROME_ARGS
from feed_scraper.config import BrowserConfig


async def save_session(login_url: str, path: str):
    """
    Opens a browser for manual login and saves the authentication state.
    Run this again whenever an extraction fails with SessionInvalidated.
    """
    config = BrowserConfig(headless=False)

    async with async_playwright() as p:
        # Headed, so you can type the credentials yourself
        browser = await p.chromium.launch(headless=config.headless, args=CHROME_ARGS)
        context = await browser.new_context(user_agent=config.user_agent, viewport=config.viewport)
        page = await context.new_page()

        print(f"Navigating to {login_url} ...")
        await page.goto(login_url)

        print("\n[ACTION REQUIRED]: Please log in manually in the browser window.")
        input("\nPress Enter here AFTER you have successfully logged in...")

        await context.storage_state(path=path)
        print(f"\n[SUCCESS]: Session saved to '{path}'. Pass it with --storage-state.")

        await browser.close()


if __name__ == "__main__":
    p = argparse.ArgumentParser(description="Save a logged in browser session")
    p.add_argument("--login-url", default="https://m.facebook.com/login/")
    p.add_argument("--out", default="auth.json")
    args = p.parse_args()
    asyncio.run(save_session(args.login_url, args.out))
