import itertools
import os
import sys
import tempfile
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]  # repo root
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Base SQLite et dossier de captures temporaires, fixés avant tout import de config
_TMP_DIR = tempfile.mkdtemp(prefix="chartiq-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["SCREENSHOTS_DIR"] = os.path.join(_TMP_DIR, "screenshots")
os.environ["OPENAI_API_KEY"] = "test-key"

from fastapi.testclient import TestClient  # noqa: E402
from langchain_core.language_models.fake_chat_models import FakeListChatModel, GenericFakeChatModel  # noqa: E402
from langchain_core.messages import AIMessage  # noqa: E402

from database import Base, SessionLocal, engine, init_db  # noqa: E402
from chart_engine.assistant import StockAssistantAgent  # noqa: E402
from chart_engine.service import ChartIQService  # noqa: E402
from chart_engine.symbol_search import SymbolSearchClient  # noqa: E402
from chart_engine.vision import VisionStreamer  # noqa: E402

DATA_URI = "data:image/png;base64,iVBORw0KGgo="

ANALYSIS_TEXT = """# AAPL

## Daily Timeframe
- **Trend:** Bullish
- **Key Levels:** 180 support, 195 resistance
- **Action:** Hold

### Summary
Uptrend intact."""


class FakeCapture:
    """Remplace le navigateur : une data URI par intervalle, ou une erreur."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    async def capture(self, symbol, interval):
        self.calls.append((symbol, interval))
        if interval in self.failing:
            raise RuntimeError(f"Browser crashed on {interval}")
        return DATA_URI

    async def capture_many(self, symbol, intervals):
        return [await self.capture(symbol, interval) for interval in intervals]


class FailingStreamer:
    def __init__(self, tokens=(), error="Vision model unavailable"):
        self.tokens = list(tokens)
        self.error = error

    async def astream_analysis(self, chart_urls, symbol=None, user_id="anonymous"):
        for token in self.tokens:
            yield token
        raise RuntimeError(self.error)

    async def analyze(self, chart_urls, symbol=None, user_id="anonymous"):
        raise RuntimeError(self.error)


class EmptyStreamer:
    async def astream_analysis(self, chart_urls, symbol=None, user_id="anonymous"):
        for token in []:
            yield token

    async def analyze(self, chart_urls, symbol=None, user_id="anonymous"):
        return ""


def fake_vision_llm(text=ANALYSIS_TEXT):
    return GenericFakeChatModel(messages=itertools.cycle([AIMessage(content=text)]))


def make_service(capture=None, streamer=None, assistant_responses=None, search_transport=None, intervals=None):
    return ChartIQService(
        capture=capture or FakeCapture(),
        streamer=streamer or VisionStreamer(fake_vision_llm(), screenshots_dir=os.environ["SCREENSHOTS_DIR"]),
        assistant=StockAssistantAgent(FakeListChatModel(responses=assistant_responses or ["RSI measures momentum."])),
        symbol_search=SymbolSearchClient(url="https://search.test/symbol_search/v3/", transport=search_transport),
        intervals=intervals or ["D"],
    )


@pytest.fixture(autouse=True)
def clean_db():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def service():
    return make_service()


@pytest.fixture
def client(service):
    # sans "with" : le lifespan (navigateur, vraie clé OpenAI) n'est pas lancé
    from main import app, get_service

    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
