"""Playwright execution context pool.

Owns the browser lifecycle for one orchestration run.  Every job gets its
own ``BrowserContext`` (independent cookies and storage) with a single
page in it, so one source's login can never leak into another's.
Adapters receive a ``Page`` — they never launch browsers themselves.

When ``browser_channel`` is set (e.g. ``msedge``), the pool launches the
real system browser as a subprocess and connects to it via the Chrome
DevTools Protocol (CDP).  This avoids Playwright's automation flags
(``--enable-automation``, ``navigator.webdriver``) that some dealer
portals use to block automated browsers.
"""

from __future__ import annotations

import asyncio
import shutil
import signal
import socket
import subprocess
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from tradecar_search.errors import ActionableError
from tradecar_search.logging import logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from playwright.async_api import Browser, BrowserContext, Page, Playwright

    from tradecar_search.config import BrowserConfig


# ---------------------------------------------------------------------------
# CDP helpers
# ---------------------------------------------------------------------------

# Known browser binary paths (macOS app bundles, then Linux defaults)
_BROWSER_PATHS: dict[str, list[str]] = {
    "msedge": [
        "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        "/usr/bin/microsoft-edge",
    ],
    "chrome": [
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/usr/bin/google-chrome",
    ],
    "chromium": [
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
        "/usr/bin/chromium",
    ],
}


def _find_browser_binary(channel: str) -> str | None:
    """Resolve a browser channel name to an executable path.

    Known install locations first, then ``$PATH``.
    """
    for path in _BROWSER_PATHS.get(channel, []):
        if Path(path).exists():
            return path
    return shutil.which(channel)


def _find_free_port() -> int:
    """Ask the OS for a free TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port: int = s.getsockname()[1]
        return port


async def _wait_for_cdp(
    cdp_url: str,
    *,
    timeout: float = 15.0,
    poll_interval: float = 0.3,
) -> None:
    """Poll until the CDP ``/json/version`` endpoint responds."""
    import urllib.request

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        try:
            await asyncio.to_thread(urllib.request.urlopen, f"{cdp_url}/json/version", timeout=2)
            logger.debug("CDP endpoint ready at %s", cdp_url)
            return
        except OSError:
            if loop.time() > deadline:
                raise TimeoutError(
                    f"CDP endpoint at {cdp_url} did not start within {timeout}s"
                ) from None
            await asyncio.sleep(poll_interval)


def _terminate_process(proc: subprocess.Popen[bytes]) -> None:
    """Gracefully stop the CDP browser subprocess."""
    if proc.poll() is not None:
        return
    try:
        proc.send_signal(signal.SIGTERM)
        proc.wait(timeout=5)
    except (OSError, subprocess.TimeoutExpired):
        logger.warning("Browser subprocess did not exit cleanly — killing")
        proc.kill()
        proc.wait(timeout=3)


# ---------------------------------------------------------------------------
# Context pool
# ---------------------------------------------------------------------------


class ContextPool:
    """Hands out one isolated browser context per job.

    Usage::

        async with ContextPool(settings.browser) as pool:
            async with pool.lease("motorway") as page:
                await adapter.authenticate(page, credentials)
                ...

    ``acquire`` failures (browser crashed, out of memory, timeout) are
    raised as :meth:`ActionableError.context_acquisition` so the caller
    can turn them into a failed job instead of a failed run.  ``release``
    never raises.
    """

    def __init__(self, config: BrowserConfig, *, acquire_timeout: float = 30.0) -> None:
        self.config = config
        self.acquire_timeout = acquire_timeout
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._contexts: dict[int, BrowserContext] = {}
        self._cdp_process: subprocess.Popen[bytes] | None = None
        self._cdp_tmpdir: str | None = None
        self._launch_lock = asyncio.Lock()
        self._entered = False

    async def __aenter__(self) -> ContextPool:
        self._entered = True
        return self

    async def _ensure_browser(self) -> Browser:
        """Start Playwright and the browser on first use.

        Launching lazily means a browser that cannot start fails the jobs
        that asked for it, not the run.  A failed launch is retried by the
        next ``acquire``.
        """
        async with self._launch_lock:
            if self._browser is not None:
                return self._browser
            from playwright.async_api import async_playwright

            if self._playwright is None:
                self._playwright = await async_playwright().start()
            try:
                if self.config.browser_channel:
                    await self._launch_cdp()
                else:
                    await self._launch_playwright()
            except BaseException:
                self._discard_cdp()
                raise
            assert self._browser is not None
            return self._browser

    async def _launch_playwright(self) -> None:
        """Launch the bundled Chromium via Playwright."""
        assert self._playwright is not None
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=list(self.config.launch_args),
        )

    async def _launch_cdp(self) -> None:
        """Launch the system browser as a subprocess and connect via CDP."""
        assert self._playwright is not None
        channel = self.config.browser_channel or "msedge"

        binary = _find_browser_binary(channel)
        if not binary:
            raise ActionableError.config(
                field_name="browser.browser_channel",
                reason=f"Could not find '{channel}' browser binary",
                suggestion=(
                    f"Install {channel} or set browser_channel to an installed browser "
                    "(msedge, chrome, chromium)"
                ),
            )

        port = _find_free_port()
        # Throwaway profile so the operator's running browser is untouched
        self._cdp_tmpdir = tempfile.mkdtemp(prefix=f"tradecar-{channel}-")

        cmd = [
            binary,
            f"--remote-debugging-port={port}",
            f"--user-data-dir={self._cdp_tmpdir}",
            "--no-first-run",
            "--no-default-browser-check",
        ]
        if self.config.headless:
            cmd.append("--headless=new")

        logger.info("Launching %s via CDP on port %d", channel, port)
        self._cdp_process = subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

        cdp_url = f"http://localhost:{port}"
        await _wait_for_cdp(cdp_url)
        self._browser = await self._playwright.chromium.connect_over_cdp(cdp_url)

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        try:
            for context in list(self._contexts.values()):
                await self._close_context(context)
            self._contexts.clear()
            if self._browser:
                browser, self._browser = self._browser, None
                try:
                    await browser.close()
                except Exception as exc:
                    logger.warning("Error closing browser: %s", exc)
            if self._playwright:
                playwright, self._playwright = self._playwright, None
                try:
                    await playwright.stop()
                except Exception as exc:
                    logger.warning("Error stopping Playwright: %s", exc)
        finally:
            self._discard_cdp()
            self._entered = False

    def _discard_cdp(self) -> None:
        if self._cdp_process:
            _terminate_process(self._cdp_process)
            self._cdp_process = None
        if self._cdp_tmpdir:
            shutil.rmtree(self._cdp_tmpdir, ignore_errors=True)
            self._cdp_tmpdir = None

    # -- acquisition ---------------------------------------------------------

    async def acquire(self, source_name: str = "") -> Page:
        """Create a fresh isolated context and return its only page."""
        if not self._entered:
            raise ActionableError.context_acquisition(
                source_name or "unknown",
                "ContextPool not entered — use 'async with'",
            )
        try:
            return await asyncio.wait_for(self._open_page(), timeout=self.acquire_timeout)
        except TimeoutError:
            raise ActionableError.context_acquisition(
                source_name or "unknown",
                f"timed out after {self.acquire_timeout:g}s",
            ) from None
        except ActionableError:
            raise
        except Exception as exc:
            raise ActionableError.context_acquisition(source_name or "unknown", str(exc)) from exc

    async def _open_page(self) -> Page:
        browser = await self._ensure_browser()
        context = await browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            user_agent=self.config.user_agent if self.config.user_agent else None,
        )
        try:
            if self.config.stealth:
                from playwright_stealth import Stealth

                await Stealth().apply_stealth_async(context)
            page = await context.new_page()
        except BaseException:
            await self._close_context(context)
            raise
        self._contexts[id(page)] = context
        return page

    async def release(self, page: Page) -> None:
        """Close the context behind *page*.  Unknown pages are ignored."""
        context = self._contexts.pop(id(page), None)
        if context is not None:
            await self._close_context(context)

    @asynccontextmanager
    async def lease(self, source_name: str = "") -> AsyncIterator[Page]:
        """Acquire a page for the duration of the block; always released."""
        page = await self.acquire(source_name)
        try:
            yield page
        finally:
            await self.release(page)

    @property
    def open_contexts(self) -> int:
        """Number of contexts currently leased out."""
        return len(self._contexts)

    @staticmethod
    async def _close_context(context: BrowserContext) -> None:
        try:
            await context.close()
        except Exception:
            logger.warning("Failed to close browser context", exc_info=True)
