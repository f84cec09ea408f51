"""
Capture des graphiques TradingView par navigateur headless (Playwright).

Un seul Chromium longue durée est partagé ; chaque capture obtient un contexte
isolé via BrowserPool.page(), borné par un sémaphore pour ne pas saturer la
machine quand plusieurs analyses tournent en parallèle.
"""
import asyncio
import os
import re
import time
import uuid
from contextlib import asynccontextmanager
from typing import List
from urllib.parse import urlencode

from loguru import logger
from playwright.async_api import async_playwright, TimeoutError as PlaywrightTimeoutError

from config import (
    CHART_BASE_URL, VALID_INTERVALS, SCREENSHOTS_DIR, SCREENSHOTS_URL_PREFIX,
    SCREENSHOT_TYPE, SCREENSHOT_QUALITY, VIEWPORT_WIDTH, VIEWPORT_HEIGHT,
    NAVIGATION_TIMEOUT_MS, WIDGET_TIMEOUT_MS, CHART_READY_TIMEOUT_MS,
    CHART_POLL_INTERVAL_MS, RENDER_SETTLE_MS, FALLBACK_DELAY_MS, MAX_CONCURRENT_CAPTURES,
)
from .errors import ChartCaptureError

WIDGET_SELECTOR = ".tradingview-widget-container"
CHART_READY_JS = """() => document.querySelectorAll('.chart-markup-table').length > 0
    && !document.querySelector('.loading-indicator')"""

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")

# libellés de timeframe -> intervalles compris par le widget
INTERVAL_ALIASES = {"1hr": "60", "4hr": "240", "1d": "D"}


def normalize_interval(interval: str) -> str:
    value = (interval or "").strip()
    value = INTERVAL_ALIASES.get(value.lower(), value.upper())
    return value if value in VALID_INTERVALS else "D"


def build_chart_url(symbol: str, interval: str = "D", base_url: str = CHART_BASE_URL) -> str:
    query = urlencode({"symbol": symbol.strip(), "interval": normalize_interval(interval)})
    return f"{base_url}/chart?{query}"


def screenshot_filename(symbol: str, interval: str, timestamp_ms: int, extension: str = "png", token: str = None) -> str:
    safe_symbol = _UNSAFE_CHARS.sub("_", symbol.strip())
    safe_interval = _UNSAFE_CHARS.sub("_", interval)
    stamp = f"{timestamp_ms}-{token}" if token else str(timestamp_ms)
    return f"screenshot_{safe_symbol}_{safe_interval}_{stamp}.{extension}"


class BrowserPool:
    """
    Pool borné de pages navigateur.

    Le navigateur est lancé au premier besoin et fermé par stop() (lifespan de l'app).
    """

    def __init__(self, size: int = MAX_CONCURRENT_CAPTURES, viewport: dict = None):
        self.size = size
        self.viewport = viewport or {"width": VIEWPORT_WIDTH, "height": VIEWPORT_HEIGHT}
        self._semaphore = asyncio.Semaphore(size)
        self._start_lock = asyncio.Lock()
        self._playwright = None
        self._browser = None

    async def start(self):
        async with self._start_lock:
            if self._browser is not None and self._browser.is_connected():
                return
            logger.info(f"🌐 Lancement de Chromium headless (pool de {self.size} pages)")
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=True, args=BROWSER_ARGS)

    async def stop(self):
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as e:
                logger.error(f"❌ Erreur à la fermeture du navigateur : {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("🛑 Pool navigateur arrêté")

    @asynccontextmanager
    async def page(self):
        async with self._semaphore:
            await self.start()
            context = await self._browser.new_context(viewport=self.viewport)
            try:
                yield await context.new_page()
            finally:
                try:
                    await context.close()
                except Exception as e:
                    logger.error(f"❌ Erreur à la fermeture du contexte navigateur : {e}")


class ChartCapture:
    def __init__(
        self,
        pool,
        screenshots_dir: str = SCREENSHOTS_DIR,
        screenshot_type: str = SCREENSHOT_TYPE,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        widget_timeout_ms: int = WIDGET_TIMEOUT_MS,
        ready_timeout_ms: int = CHART_READY_TIMEOUT_MS,
        poll_interval_ms: int = CHART_POLL_INTERVAL_MS,
        settle_ms: int = RENDER_SETTLE_MS,
        fallback_delay_ms: int = FALLBACK_DELAY_MS,
    ):
        self.pool = pool
        self.screenshots_dir = screenshots_dir
        self.screenshot_type = "jpeg" if screenshot_type in ("jpg", "jpeg") else "png"
        self.navigation_timeout_ms = navigation_timeout_ms
        self.widget_timeout_ms = widget_timeout_ms
        self.ready_timeout_ms = ready_timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.settle_ms = settle_ms
        self.fallback_delay_ms = fallback_delay_ms
        os.makedirs(self.screenshots_dir, exist_ok=True)

    @property
    def extension(self) -> str:
        return "jpg" if self.screenshot_type == "jpeg" else "png"

    async def capture(self, symbol: str, interval: str) -> str:
        """
        Capture un graphique et retourne son chemin public (/screenshots/...).

        Lève ChartCaptureError si aucun fichier non vide n'a été écrit ; les
        erreurs du navigateur remontent telles quelles.
        """
        url = build_chart_url(symbol, interval)
        filename = None
        logger.info(f"📸 Capture {symbol} {interval} → {url}")

        try:
            async with self.pool.page() as page:
                try:
                    await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout_ms)
                except PlaywrightTimeoutError:
                    logger.warning(f"⏱️ Timeout de navigation pour {url}, capture quand même")

                await self._wait_for_chart(page, symbol, interval)

                # suffixe aléatoire : deux captures simultanées du même graphique ne s'écrasent pas
                filename = screenshot_filename(
                    symbol, interval, int(time.time() * 1000), self.extension, token=uuid.uuid4().hex[:6]
                )
                options = {
                    "path": os.path.join(self.screenshots_dir, filename),
                    "full_page": False,
                    "type": self.screenshot_type,
                }
                if self.screenshot_type == "jpeg":
                    options["quality"] = SCREENSHOT_QUALITY
                await page.screenshot(**options)
        except Exception as e:
            logger.error(f"❌ Erreur de capture pour {symbol} {interval} : {e}")
            raise

        path = os.path.join(self.screenshots_dir, filename)
        if not os.path.isfile(path) or os.path.getsize(path) == 0:
            raise ChartCaptureError(f"Screenshot for {symbol} {interval} was not written")

        logger.info(f"✅ Graphique {symbol} {interval} enregistré : {filename}")
        return f"{SCREENSHOTS_URL_PREFIX}/{filename}"

    async def capture_many(self, symbol: str, intervals: List[str]) -> List[str]:
        """Captures concurrentes, dans l'ordre des intervalles ; la première erreur remonte une fois toutes terminées."""
        results = await asyncio.gather(
            *(self.capture(symbol, interval) for interval in intervals), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def _wait_for_chart(self, page, symbol: str, interval: str):
        try:
            await page.wait_for_selector(WIDGET_SELECTOR, state="visible", timeout=self.widget_timeout_ms)
            if not await self._poll_chart_ready(page):
                logger.warning(f"⏱️ Graphique {symbol} {interval} pas prêt après {self.ready_timeout_ms} ms")
            await asyncio.sleep(self.settle_ms / 1000)
        except PlaywrightTimeoutError:
            logger.warning(f"⏱️ Widget TradingView introuvable pour {symbol} {interval}, attente de secours")
            await asyncio.sleep(self.fallback_delay_ms / 1000)

    async def _poll_chart_ready(self, page) -> bool:
        try:
            await page.wait_for_function(
                CHART_READY_JS, polling=self.poll_interval_ms, timeout=self.ready_timeout_ms
            )
            return True
        except PlaywrightTimeoutError:
            return False
