import sys
import os

# Ajouter le dossier courant au sys.path pour permettre les imports relatifs (main, config, etc.)
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from fastapi import FastAPI, HTTPException, Depends, Request, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
import uvicorn
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import List, Optional

from chart_engine.chart_page import render_chart_page
from chart_engine.errors import MessageNotFoundError, MessageValidationError, SymbolSearchError
from chart_engine.service import ChartIQService, setup_chartiq_service
from chart_engine.sse import relay_analysis
from chart_engine.store import AnalysisStore, MessageStore
from config import SCREENSHOTS_DIR, SCREENSHOTS_URL_PREFIX, HISTORY_CONTEXT_LIMIT, setup_logging
from database import init_db, get_db
from models import MessageRole
from schemas import (
    AnalysisHistoryItem, AnalysisHistoryMessage, AnalysisResult, AnalyzeChartsRequest,
    ChatHistoryRequest, ChatHistoryResponse, DeleteResponse, GenerateChartRequest,
    GenerateChartResponse, GenerateChartsRequest, GenerateChartsResponse, MessageCreate,
    MessageSchema, SaveAnalysisRequest, StockAssistantRequest, StockAssistantResponse,
    SymbolSearchResponse,
)

NO_ANALYSIS_DETAIL = "No previous analysis found. Please run an analysis first."


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    init_db()
    logger.info("🚀 Démarrage de l'API ChartIQ...")
    app.state.service = None
    try:
        app.state.service = setup_chartiq_service()
        logger.info("✅ Service ChartIQ initialisé avec succès")
    except Exception as e:
        logger.error(f"❌ Erreur lors de l'initialisation du service ChartIQ: {e}")

    yield

    # Shutdown
    logger.info("🛑 Arrêt de l'API ChartIQ...")
    if app.state.service is not None:
        await app.state.service.close()

app = FastAPI(title="ChartIQ API", description="Analyse technique de graphiques par modèle vision", lifespan=lifespan)

# Configuration CORS (front web et Mini-App Telegram)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Champs manquants ou invalides : 400 plutôt que le 422 par défaut de FastAPI"""
    fields = sorted({
        ".".join(str(part) for part in error["loc"] if part not in ("body", "query", "path"))
        for error in exc.errors()
    })
    return JSONResponse(status_code=400, content={"detail": f"Missing or invalid fields: {', '.join(fields)}"})


def get_service(request: Request) -> ChartIQService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Le service ChartIQ n'est pas encore prêt")
    return service


def upstream_error(message: str, e: Exception) -> HTTPException:
    return HTTPException(status_code=500, detail={"error": message, "details": str(e)})


# --- Graphiques ---

@app.get("/chart", response_class=HTMLResponse)
def chart_page(symbol: str, interval: str = "D"):
    """Page du widget TradingView, celle que le navigateur headless photographie"""
    return render_chart_page(symbol, interval)

@app.post("/generate-charts", response_model=GenerateChartsResponse)
async def generate_charts(request: GenerateChartsRequest, service: ChartIQService = Depends(get_service)):
    symbol = request.symbol.strip()
    if not symbol:
        raise HTTPException(status_code=400, detail="Symbol is required")

    try:
        chart_urls = await service.generate_charts(symbol)
    except Exception as e:
        logger.error(f"❌ Erreur de génération des graphiques pour {symbol}: {e}")
        raise upstream_error("Failed to generate charts", e)
    return GenerateChartsResponse(chart_urls=chart_urls)

@app.post("/generate-chart", response_model=GenerateChartResponse)
async def generate_chart(request: GenerateChartRequest, service: ChartIQService = Depends(get_service)):
    symbol = request.symbol.strip()
    if not symbol:
        raise HTTPException(status_code=400, detail="Symbol is required")

    try:
        chart_url = await service.capture.capture(symbol, request.interval)
    except Exception as e:
        logger.error(f"❌ Erreur de génération du graphique {symbol} {request.interval}: {e}")
        raise upstream_error("Failed to generate chart", e)
    return GenerateChartResponse(chart_url=chart_url)

@app.post("/analyze-charts")
async def analyze_charts(payload: AnalyzeChartsRequest, request: Request, service: ChartIQService = Depends(get_service)):
    """Analyse en streaming (SSE) : images, content..., puis done ou error"""
    events = relay_analysis(
        service.streamer,
        payload.chart_urls,
        payload.symbol,
        payload.user_id,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# --- Messages ---

@app.post("/messages", response_model=MessageSchema, status_code=201)
def create_message(request: MessageCreate, db: Session = Depends(get_db)):
    try:
        return MessageStore(db).append(request.content, request.user_id, request.role)
    except MessageValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.delete("/messages/{message_id}", response_model=DeleteResponse)
def delete_message(message_id: int, db: Session = Depends(get_db)):
    try:
        MessageStore(db).delete(message_id)
    except MessageNotFoundError:
        raise HTTPException(status_code=404, detail="Message not found")
    return DeleteResponse()

@app.post("/chat-message", response_model=ChatHistoryResponse)
def get_chat_messages(request: ChatHistoryRequest, db: Session = Depends(get_db)):
    """Historique paginé d'un utilisateur (curseur prioritaire sur page)"""
    rows, pagination, total = MessageStore(db).list_page(
        request.user_id, page=request.page, page_size=request.page_size, cursor=request.cursor
    )
    return ChatHistoryResponse(
        messages=[MessageSchema.model_validate(row) for row in rows],
        count=len(rows),
        total_count=total,
        pagination=pagination,
        symbol=request.symbol,
    )


# --- Assistant ---

@app.post("/stock-assistant", response_model=StockAssistantResponse)
async def stock_assistant(
    request: StockAssistantRequest,
    db: Session = Depends(get_db),
    service: ChartIQService = Depends(get_service),
):
    if not request.question.strip():
        raise HTTPException(status_code=400, detail="Question is required")

    store = MessageStore(db)

    # 1. Analyse de référence : celle envoyée par le client, sinon la dernière en base
    analysis = request.analysis
    if not analysis:
        last = store.last_analysis(request.user_id)
        if last is None:
            raise HTTPException(status_code=404, detail=NO_ANALYSIS_DETAIL)
        analysis = last.content

    # 2. Historique : celui du client, sinon les derniers messages en base
    if request.conversation_history is None:
        history = store.recent_history(request.user_id, HISTORY_CONTEXT_LIMIT)
    else:
        history = [m.model_dump() for m in request.conversation_history]

    try:
        response = await service.assistant.process_query(analysis, request.question, history, request.user_id)
    except Exception as e:
        logger.error(f"❌ Erreur de l'assistant pour {request.user_id}: {e}")
        raise upstream_error("An error occurred while processing your request", e)

    # 3. Sauvegarde de la réponse (non bloquante)
    try:
        store.append(response, request.user_id, MessageRole.ASSISTANT.value)
    except (SQLAlchemyError, MessageValidationError) as e:
        db.rollback()
        logger.warning(f"⚠️ Réponse de l'assistant non sauvegardée: {e}")

    history = history + [
        {"role": "user", "content": request.question},
        {"role": "assistant", "content": response},
    ]
    return StockAssistantResponse(response=response, conversation_history=history)


# --- Recherche de symboles ---

@app.get("/symbol-search", response_model=SymbolSearchResponse)
async def symbol_search(
    text: str = Query(..., min_length=1),
    search_type: Optional[str] = Query(None, alias="filter"),
    service: ChartIQService = Depends(get_service),
):
    try:
        return await service.symbol_search.search(text, search_type)
    except SymbolSearchError as e:
        raise upstream_error("Failed to fetch symbols", e)


# --- Analyses persistées ---

@app.get("/generate", response_model=AnalysisResult)
async def generate(
    symbol: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    platform: Optional[str] = None,
    db: Session = Depends(get_db),
    service: ChartIQService = Depends(get_service),
):
    """Pipeline complet non streamé (captures + analyse + persistance)"""
    symbol = symbol.strip().upper()
    if not symbol:
        raise HTTPException(status_code=400, detail="Symbol is required")

    try:
        return await service.run_full_analysis(db, symbol, user_id, platform)
    except MessageValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise upstream_error("Analysis failed", e)

@app.post("/save-analysis", response_model=AnalysisResult)
def save_analysis(request: SaveAnalysisRequest, db: Session = Depends(get_db)):
    if not request.analysis.strip():
        raise HTTPException(status_code=400, detail="Analysis is required")

    analysis = AnalysisStore(db).save_completed(request.symbol, request.analysis, request.chart_urls, request.user_id)
    logger.info(f"💾 Analyse #{analysis.id} de {request.symbol} sauvegardée")
    return AnalysisResult(
        id=analysis.id, status=analysis.status, chart_urls=request.chart_urls, analysis=request.analysis
    )

@app.get("/analysis-history/{user_id}", response_model=List[AnalysisHistoryItem])
def get_analysis_history(user_id: str, db: Session = Depends(get_db)):
    """Dernières analyses d'un utilisateur, les plus récentes d'abord"""
    return [
        AnalysisHistoryItem(
            id=analysis.id,
            symbol=analysis.symbol,
            status=analysis.status,
            created_at=analysis.created_at,
            messages=[
                AnalysisHistoryMessage(id=m.id, content=m.content, role=m.role, timestamp=m.created_at)
                for m in analysis.messages
            ],
            chart_urls=[image.image_path for image in analysis.chart_images if image.image_path],
        )
        for analysis in AnalysisStore(db).history(user_id)
    ]


# Captures servies en statique (/screenshots/xxx.png)
os.makedirs(SCREENSHOTS_DIR, exist_ok=True)
app.mount(SCREENSHOTS_URL_PREFIX, StaticFiles(directory=SCREENSHOTS_DIR), name="screenshots")

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
