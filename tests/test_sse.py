import asyncio

from chart_engine.sse import (
    ContentEvent, DoneEvent, ErrorEvent, ImagesEvent, format_sse, parse_sse_line, relay_analysis,
)
from conftest import FailingStreamer


class ListStreamer:
    def __init__(self, tokens, delay=0):
        self.tokens = tokens
        self.delay = delay
        self.closed = False

    async def astream_analysis(self, chart_urls, symbol=None, user_id="anonymous"):
        try:
            for token in self.tokens:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield token
        finally:
            self.closed = True


def collect(generator):
    async def run():
        return [parse_sse_line(line.strip()) async for line in generator]
    return asyncio.run(run())


def test_format_sse_framing():
    assert format_sse(ContentEvent(data="Hi")) == 'data: {"type":"content","data":"Hi"}\n\n'
    assert format_sse(DoneEvent()) == 'data: {"type":"done"}\n\n'


def test_parse_sse_line_ignores_other_lines():
    assert parse_sse_line("") is None
    assert parse_sse_line(": keep-alive") is None
    event = parse_sse_line('data: {"type":"images","data":["/screenshots/a.png"]}')
    assert isinstance(event, ImagesEvent)
    assert event.data == ["/screenshots/a.png"]


def test_relay_orders_images_content_done():
    streamer = ListStreamer(["Hel", "lo", " world"])
    events = collect(relay_analysis(streamer, ["/screenshots/a.png"], "AAPL", "u1"))

    assert isinstance(events[0], ImagesEvent)
    assert events[0].data == ["/screenshots/a.png"]
    assert [e.data for e in events[1:-1]] == ["Hel", "lo", " world"]
    assert isinstance(events[-1], DoneEvent)
    assert streamer.closed


def test_relay_emits_single_error_after_partial_content():
    events = collect(relay_analysis(FailingStreamer(tokens=["partial"]), ["x.png"], "AAPL", "u1"))

    assert [type(e) for e in events] == [ImagesEvent, ContentEvent, ErrorEvent]
    assert events[-1].data == "Vision model unavailable"


def test_relay_with_no_charts_reports_error():
    streamer = ListStreamer(["never"])
    events = collect(relay_analysis(streamer, [], "AAPL", "u1"))

    assert events[0] == ImagesEvent(data=[])
    assert isinstance(events[1], ErrorEvent)
    assert len(events) == 2


def test_relay_stops_without_terminal_event_when_client_leaves():
    streamer = ListStreamer(["a", "b", "c", "d"])
    checks = {"count": 0}

    async def is_disconnected():
        checks["count"] += 1
        return checks["count"] > 2

    events = collect(relay_analysis(streamer, ["x.png"], "AAPL", "u1", is_disconnected=is_disconnected))

    assert [type(e) for e in events] == [ImagesEvent, ContentEvent, ContentEvent]
    assert streamer.closed


def test_relay_times_out():
    streamer = ListStreamer(["a", "b"], delay=0.2)
    events = collect(relay_analysis(streamer, ["x.png"], "AAPL", "u1", timeout=0.05))

    assert isinstance(events[-1], ErrorEvent)
    assert "timed out" in events[-1].data
    assert not any(isinstance(e, DoneEvent) for e in events)
