import os
import sys
from dotenv import load_dotenv
from loguru import logger

load_dotenv()


BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PUBLIC_DIR = os.path.join(BASE_DIR, "public")
SCREENSHOTS_DIR = os.getenv("SCREENSHOTS_DIR", os.path.join(PUBLIC_DIR, "screenshots"))
SCREENSHOTS_URL_PREFIX = "/screenshots"

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./chartiq.db")

# Modèles OpenAI (ou compatible OpenAI via OPENAI_BASE_URL)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
VISION_MODEL = os.getenv("OPENAI_API_MODEL", "gpt-4o")
ASSISTANT_MODEL = os.getenv("OPENAI_MODEL_NAME", VISION_MODEL)
ASSISTANT_TEMPERATURE = 0.2

ANALYSIS_MAX_TOKENS = int(os.getenv("ANALYSIS_MAX_TOKENS", "1000"))
ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "180"))

# Page /chart capturée par le navigateur headless
CHART_BASE_URL = os.getenv("CHART_BASE_URL", "http://localhost:8000").rstrip("/")
VALID_INTERVALS = ["1", "3", "5", "15", "30", "60", "120", "240", "D", "W", "M"]
# "D" = mode court (1 graphique), "60,240,D" = mode complet 1h / 4h / 1d
CHART_INTERVALS = [i.strip() for i in os.getenv("CHART_INTERVALS", "D").split(",") if i.strip()]

SCREENSHOT_TYPE = os.getenv("SCREENSHOT_TYPE", "png").lower()
SCREENSHOT_QUALITY = 50  # uniquement pour le jpeg
VIEWPORT_WIDTH = int(os.getenv("VIEWPORT_WIDTH", "1920"))
VIEWPORT_HEIGHT = int(os.getenv("VIEWPORT_HEIGHT", "1080"))

# Attentes du navigateur (millisecondes)
NAVIGATION_TIMEOUT_MS = int(os.getenv("NAVIGATION_TIMEOUT_MS", "60000"))
WIDGET_TIMEOUT_MS = int(os.getenv("WIDGET_TIMEOUT_MS", "30000"))
CHART_READY_TIMEOUT_MS = int(os.getenv("CHART_READY_TIMEOUT_MS", "20000"))
CHART_POLL_INTERVAL_MS = int(os.getenv("CHART_POLL_INTERVAL_MS", "500"))
RENDER_SETTLE_MS = int(os.getenv("RENDER_SETTLE_MS", "5000"))
FALLBACK_DELAY_MS = int(os.getenv("FALLBACK_DELAY_MS", "10000"))

MAX_CONCURRENT_CAPTURES = int(os.getenv("MAX_CONCURRENT_CAPTURES", "3"))

# Une seule politique de pagination pour tous les endpoints
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "50"))

HISTORY_CONTEXT_LIMIT = int(os.getenv("HISTORY_CONTEXT_LIMIT", "10"))
ANALYSIS_HISTORY_LIMIT = int(os.getenv("ANALYSIS_HISTORY_LIMIT", "10"))

SYMBOL_SEARCH_URL = os.getenv(
    "SYMBOL_SEARCH_URL",
    "https://symbol-search.tradingview.com/symbol_search/v3/",
)
SYMBOL_SEARCH_TIMEOUT = 10.0

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging():
    """Configure le logger loguru global (une seule sortie stderr)."""
    logger.remove()
    logger.add(sys.stderr, level=LOG_LEVEL, format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}: {message}")
