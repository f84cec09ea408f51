import base64
import os
from typing import AsyncIterator, List
from urllib.parse import urlparse

from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI
from loguru import logger

from config import SCREENSHOTS_DIR, VISION_MODEL, OPENAI_API_KEY, OPENAI_BASE_URL, ANALYSIS_MAX_TOKENS
from .errors import ChartImageError
from .prompts import build_analysis_prompt

_MIME_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


def create_vision_llm() -> ChatOpenAI:
    """Modèle vision en streaming (token par token)."""
    return ChatOpenAI(
        model=VISION_MODEL,
        api_key=OPENAI_API_KEY or None,
        base_url=OPENAI_BASE_URL,
        max_tokens=ANALYSIS_MAX_TOKENS,
        streaming=True,
    )


def load_image_data_uri(chart_url: str, screenshots_dir: str = SCREENSHOTS_DIR) -> str:
    """
    Convertit une référence de graphique (/screenshots/xxx.png) en data URI base64.

    Seul le nom de fichier est conservé : une référence ne peut pas sortir du
    dossier des captures.
    """
    if chart_url.startswith("data:image/"):
        return chart_url

    filename = os.path.basename(urlparse(chart_url).path)
    path = os.path.join(screenshots_dir, filename)
    try:
        with open(path, "rb") as image_file:
            data = image_file.read()
    except OSError as e:
        raise ChartImageError(f"Cannot read chart image {chart_url}: {e}") from e
    if not data:
        raise ChartImageError(f"Chart image {chart_url} is empty")

    mime = _MIME_TYPES.get(os.path.splitext(filename)[1].lower(), "image/png")
    return f"data:{mime};base64,{base64.b64encode(data).decode('utf-8')}"


def _chunk_text(chunk) -> str:
    content = chunk.content
    if isinstance(content, str):
        return content
    # certains fournisseurs renvoient une liste de parts
    return "".join(part.get("text", "") for part in content if isinstance(part, dict))


class VisionStreamer:
    def __init__(self, llm, screenshots_dir: str = SCREENSHOTS_DIR):
        self.llm = llm
        self.screenshots_dir = screenshots_dir

    def build_message(self, chart_urls: List[str], symbol: str = None) -> HumanMessage:
        """Un seul message humain : le prompt texte puis une part image par graphique."""
        content = [{"type": "text", "text": build_analysis_prompt(symbol, len(chart_urls))}]
        for url in chart_urls:
            content.append({
                "type": "image_url",
                "image_url": {"url": load_image_data_uri(url, self.screenshots_dir)},
            })
        return HumanMessage(content=content)

    async def astream_analysis(self, chart_urls: List[str], symbol: str = None, user_id: str = "anonymous") -> AsyncIterator[str]:
        message = self.build_message(chart_urls, symbol)
        config = {
            "tags": ["chart-analysis"],
            "metadata": {"user_id": user_id, "symbol": symbol, "chart_count": len(chart_urls)},
        }
        logger.info(f"🧠 Analyse vision de {symbol} ({len(chart_urls)} graphiques) pour {user_id}")
        async for chunk in self.llm.astream([message], config=config):
            token = _chunk_text(chunk)
            if token:
                yield token

    async def analyze(self, chart_urls: List[str], symbol: str = None, user_id: str = "anonymous") -> str:
        """Version non streamée (pipeline /generate)."""
        tokens = [token async for token in self.astream_analysis(chart_urls, symbol, user_id)]
        return "".join(tokens)
