import asyncio
import os
from contextlib import asynccontextmanager

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import chart_engine.capture as capture_module
from chart_engine.capture import ChartCapture, build_chart_url, screenshot_filename
from chart_engine.chart_page import render_chart_page
from chart_engine.errors import ChartCaptureError


class FakePage:
    def __init__(self, goto_timeout=False, widget_timeout=False, ready=True, write=True, screenshot_error=None):
        self.goto_timeout = goto_timeout
        self.widget_timeout = widget_timeout
        self.ready = ready
        self.write = write
        self.screenshot_error = screenshot_error
        self.visited = []
        self.screenshot_options = None

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if self.goto_timeout:
            raise PlaywrightTimeoutError("navigation timeout")

    async def wait_for_selector(self, selector, state=None, timeout=None):
        if self.widget_timeout:
            raise PlaywrightTimeoutError("widget timeout")

    async def wait_for_function(self, expression, polling=None, timeout=None):
        if not self.ready:
            raise PlaywrightTimeoutError("chart not ready")

    async def screenshot(self, **options):
        self.screenshot_options = options
        if self.screenshot_error:
            raise self.screenshot_error
        if self.write:
            with open(options["path"], "wb") as f:
                f.write(b"image-bytes")


class FakePool:
    def __init__(self, page):
        self._page = page
        self.released = 0

    @asynccontextmanager
    async def page(self):
        try:
            yield self._page
        finally:
            self.released += 1


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(seconds):
        recorded.append(seconds)

    monkeypatch.setattr(capture_module.asyncio, "sleep", fake_sleep)
    return recorded


def make_capture(tmp_path, page, **kwargs):
    options = {"settle_ms": 5000, "fallback_delay_ms": 10000}
    options.update(kwargs)
    return ChartCapture(FakePool(page), screenshots_dir=str(tmp_path), **options)


def test_chart_url_is_encoded_and_interval_validated():
    assert build_chart_url("NASDAQ:AAPL", "60", base_url="http://app") == "http://app/chart?symbol=NASDAQ%3AAAPL&interval=60"
    assert build_chart_url("AAPL", "7m", base_url="http://app").endswith("interval=D")


def test_screenshot_filename_is_filesystem_safe():
    assert screenshot_filename("BINANCE:BTC/USDT", "60", 123) == "screenshot_BINANCE_BTC_USDT_60_123.png"
    assert screenshot_filename("AAPL", "D", 5, "jpg") == "screenshot_AAPL_D_5.jpg"


def test_capture_writes_file_and_returns_public_path(tmp_path, sleeps):
    page = FakePage()
    capture = make_capture(tmp_path, page)

    chart_url = asyncio.run(capture.capture("AAPL", "D"))

    filename = chart_url.rsplit("/", 1)[1]
    assert chart_url.startswith("/screenshots/screenshot_AAPL_D_")
    assert os.path.getsize(tmp_path / filename) > 0
    assert page.visited[0].endswith("/chart?symbol=AAPL&interval=D")
    assert page.screenshot_options["full_page"] is False
    assert sleeps == [5.0]
    assert capture.pool.released == 1


def test_navigation_timeout_is_not_fatal(tmp_path, sleeps):
    capture = make_capture(tmp_path, FakePage(goto_timeout=True))
    assert asyncio.run(capture.capture("AAPL", "D")).startswith("/screenshots/")


def test_widget_timeout_uses_fallback_delay(tmp_path, sleeps):
    capture = make_capture(tmp_path, FakePage(widget_timeout=True))
    asyncio.run(capture.capture("AAPL", "D"))
    assert sleeps == [10.0]


def test_chart_not_ready_still_captures_after_settle(tmp_path, sleeps):
    capture = make_capture(tmp_path, FakePage(ready=False))
    assert asyncio.run(capture.capture("AAPL", "60")).startswith("/screenshots/screenshot_AAPL_60_")
    assert sleeps == [5.0]


def test_browser_error_propagates_and_page_is_released(tmp_path, sleeps):
    capture = make_capture(tmp_path, FakePage(screenshot_error=RuntimeError("Target closed")))

    with pytest.raises(RuntimeError, match="Target closed"):
        asyncio.run(capture.capture("AAPL", "D"))
    assert capture.pool.released == 1


def test_missing_file_raises_capture_error(tmp_path, sleeps):
    capture = make_capture(tmp_path, FakePage(write=False))
    with pytest.raises(ChartCaptureError):
        asyncio.run(capture.capture("AAPL", "D"))


def test_jpeg_captures_use_quality(tmp_path, sleeps):
    page = FakePage()
    capture = make_capture(tmp_path, page, screenshot_type="jpeg")

    chart_url = asyncio.run(capture.capture("AAPL", "D"))

    assert chart_url.endswith(".jpg")
    assert page.screenshot_options["type"] == "jpeg"
    assert page.screenshot_options["quality"] == 50


def test_capture_many_preserves_interval_order(tmp_path, sleeps):
    capture = make_capture(tmp_path, FakePage())
    chart_urls = asyncio.run(capture.capture_many("AAPL", ["60", "240", "D"]))
    assert [url.split("_")[2] for url in chart_urls] == ["60", "240", "D"]


def test_chart_page_embeds_widget():
    html = render_chart_page("NASDAQ:AAPL</script>", "240")
    assert 'class="tradingview-widget-container"' in html
    assert '"interval": "240"' in html
    assert "</script>\"" not in html


def test_timeframe_labels_map_to_widget_intervals():
    assert build_chart_url("AAPL", "1hr", base_url="http://app").endswith("interval=60")
    assert build_chart_url("AAPL", "4HR", base_url="http://app").endswith("interval=240")
    assert build_chart_url("AAPL", "1d", base_url="http://app").endswith("interval=D")
    assert build_chart_url("AAPL", "w", base_url="http://app").endswith("interval=W")


def test_capture_with_timeframe_label_keeps_label_in_filename(tmp_path, sleeps):
    page = FakePage()
    capture = make_capture(tmp_path, page)

    chart_url = asyncio.run(capture.capture("AAPL", "1hr"))

    assert page.visited[0].endswith("/chart?symbol=AAPL&interval=60")
    assert chart_url.startswith("/screenshots/screenshot_AAPL_1hr_")


def test_same_chart_captured_twice_in_one_millisecond_gets_two_files(tmp_path, sleeps, monkeypatch):
    monkeypatch.setattr(capture_module.time, "time", lambda: 1700000000.0)
    capture = make_capture(tmp_path, FakePage())

    first = asyncio.run(capture.capture("AAPL", "D"))
    second = asyncio.run(capture.capture("AAPL", "D"))

    assert first != second
    assert len(os.listdir(tmp_path)) == 2


class PartlyFailingCapture(ChartCapture):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.finished = []

    async def capture(self, symbol, interval):
        if interval == "60":
            raise ChartCaptureError("widget crashed")
        await asyncio.sleep(0)
        self.finished.append(interval)
        return f"/screenshots/{interval}.png"


def test_capture_many_waits_for_every_capture_before_raising(tmp_path):
    capture = PartlyFailingCapture(FakePool(FakePage()), screenshots_dir=str(tmp_path))

    with pytest.raises(ChartCaptureError, match="widget crashed"):
        asyncio.run(capture.capture_many("AAPL", ["60", "240", "D"]))
    assert capture.finished == ["240", "D"]
