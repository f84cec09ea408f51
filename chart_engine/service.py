import asyncio
from typing import List

from loguru import logger
from sqlalchemy.orm import Session

from config import CHART_INTERVALS, SCREENSHOTS_DIR, MAX_CONCURRENT_CAPTURES
from models import AnalysisStatus, MessageRole
from schemas import AnalysisResult
from .assistant import StockAssistantAgent, create_assistant_llm
from .capture import BrowserPool, ChartCapture
from .errors import ChartCaptureError, ChartIQError
from .store import AnalysisStore, MessageStore
from .symbol_search import SymbolSearchClient
from .vision import VisionStreamer, create_vision_llm


class ChartIQService:
    """
    Regroupe les composants partagés entre les requêtes.

    Construit une fois dans le lifespan de l'app puis injecté dans les routes.
    """

    def __init__(self, capture, streamer, assistant, symbol_search, pool=None, intervals: List[str] = None):
        self.capture = capture
        self.streamer = streamer
        self.assistant = assistant
        self.symbol_search = symbol_search
        self.pool = pool
        self.intervals = intervals or CHART_INTERVALS

    async def generate_charts(self, symbol: str) -> List[str]:
        return await self.capture.capture_many(symbol, self.intervals)

    async def run_full_analysis(self, db: Session, symbol: str, user_id: str = None, platform: str = None) -> AnalysisResult:
        """
        Pipeline non streamé : captures, analyse, persistance.

        Chaque graphique donne une ligne ChartImage, avec un marqueur d'erreur si
        sa capture a échoué. L'analyse passe en FAILED si une étape lève.
        """
        analyses = AnalysisStore(db)
        analysis = analyses.create(symbol, user_id, platform)
        logger.info(f"🚀 Analyse #{analysis.id} de {symbol} démarrée")

        try:
            results = await asyncio.gather(
                *(self.capture.capture(symbol, interval) for interval in self.intervals),
                return_exceptions=True,
            )
            chart_urls = []
            for interval, result in zip(self.intervals, results):
                if isinstance(result, Exception):
                    logger.warning(f"⚠️ Graphique {interval} de {symbol} en échec : {result}")
                    analyses.add_chart_image(analysis, interval, error=str(result) or result.__class__.__name__)
                else:
                    analyses.add_chart_image(analysis, interval, image_path=result)
                    chart_urls.append(result)

            if not chart_urls:
                raise ChartCaptureError(f"No chart could be generated for {symbol}")

            analyses.set_status(analysis, AnalysisStatus.ANALYZING)
            text = await self.streamer.analyze(chart_urls, symbol, user_id or "anonymous")
            if not text.strip():
                raise ChartIQError(f"Empty analysis received for {symbol}")

            MessageStore(db).append(text, user_id or "anonymous", MessageRole.ASSISTANT.value, analysis_id=analysis.id)
            analyses.set_status(analysis, AnalysisStatus.COMPLETED)
        except Exception as e:
            logger.error(f"❌ Analyse #{analysis.id} de {symbol} en échec : {e}")
            db.rollback()
            analyses.set_status(analysis, AnalysisStatus.FAILED, error=str(e) or e.__class__.__name__)
            raise

        logger.info(f"✅ Analyse #{analysis.id} de {symbol} terminée")
        return AnalysisResult(id=analysis.id, status=analysis.status, chart_urls=chart_urls, analysis=text)

    async def close(self):
        if self.pool is not None:
            await self.pool.stop()


def setup_chartiq_service() -> ChartIQService:
    """
    Configure et retourne le service ChartIQ.

    Le navigateur n'est lancé qu'à la première capture ; les modèles sont
    construits tout de suite pour échouer au démarrage si la clé manque.
    """
    logger.info("🔧 Configuration du service ChartIQ...")

    pool = BrowserPool(size=MAX_CONCURRENT_CAPTURES)
    capture = ChartCapture(pool, screenshots_dir=SCREENSHOTS_DIR)
    streamer = VisionStreamer(create_vision_llm(), screenshots_dir=SCREENSHOTS_DIR)
    assistant = StockAssistantAgent(create_assistant_llm())

    logger.info(f"📊 Intervalles capturés : {', '.join(CHART_INTERVALS)}")
    return ChartIQService(capture, streamer, assistant, SymbolSearchClient(), pool=pool)
