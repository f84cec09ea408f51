import asyncio
import base64

import pytest

from chart_engine.errors import ChartImageError
from chart_engine.vision import VisionStreamer, load_image_data_uri
from conftest import ANALYSIS_TEXT, DATA_URI, fake_vision_llm

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


def test_screenshot_path_becomes_data_uri(tmp_path):
    (tmp_path / "screenshot_AAPL_D_1.png").write_bytes(PNG_BYTES)

    uri = load_image_data_uri("/screenshots/screenshot_AAPL_D_1.png", str(tmp_path))

    assert uri == "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


def test_jpeg_mime_type(tmp_path):
    (tmp_path / "chart.jpg").write_bytes(b"jpegdata")
    assert load_image_data_uri("/screenshots/chart.jpg", str(tmp_path)).startswith("data:image/jpeg;base64,")


def test_data_uri_passes_through(tmp_path):
    assert load_image_data_uri(DATA_URI, str(tmp_path)) == DATA_URI


def test_unreadable_chart_reference(tmp_path):
    with pytest.raises(ChartImageError):
        load_image_data_uri("/screenshots/missing.png", str(tmp_path))


def test_empty_chart_file(tmp_path):
    (tmp_path / "empty.png").write_bytes(b"")
    with pytest.raises(ChartImageError):
        load_image_data_uri("/screenshots/empty.png", str(tmp_path))


def test_reference_cannot_leave_screenshots_dir(tmp_path):
    outside = tmp_path / "secret.png"
    outside.write_bytes(PNG_BYTES)
    screenshots = tmp_path / "screenshots"
    screenshots.mkdir()

    with pytest.raises(ChartImageError):
        load_image_data_uri("/screenshots/../secret.png", str(screenshots / "nested"))


def test_message_has_text_then_one_image_per_chart(tmp_path):
    streamer = VisionStreamer(fake_vision_llm(), screenshots_dir=str(tmp_path))
    message = streamer.build_message([DATA_URI, DATA_URI, DATA_URI], "AAPL")

    assert message.content[0]["type"] == "text"
    assert "## 1-Hour Timeframe" in message.content[0]["text"]
    assert [part["type"] for part in message.content[1:]] == ["image_url"] * 3
    assert message.content[1]["image_url"]["url"] == DATA_URI


def test_stream_tokens_concatenate_to_full_answer(tmp_path):
    streamer = VisionStreamer(fake_vision_llm(), screenshots_dir=str(tmp_path))

    async def run():
        return [token async for token in streamer.astream_analysis([DATA_URI], "AAPL", "u1")]

    tokens = asyncio.run(run())

    assert len(tokens) > 1
    assert "".join(tokens) == ANALYSIS_TEXT


def test_analyze_returns_joined_text(tmp_path):
    streamer = VisionStreamer(fake_vision_llm("Short answer"), screenshots_dir=str(tmp_path))
    assert asyncio.run(streamer.analyze([DATA_URI], "AAPL")) == "Short answer"
