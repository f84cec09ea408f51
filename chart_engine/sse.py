"""
Relais Server-Sent Events entre le modèle vision et le client HTTP.

Chaque évènement est une ligne `data: {"type": ..., "data": ...}` suivie d'une
ligne vide. Séquence : images, content (un par token, dans l'ordre d'arrivée),
puis un terminal done ou error.
"""
import asyncio
from typing import Annotated, AsyncIterator, Awaitable, Callable, List, Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter

from config import ANALYSIS_TIMEOUT_SECONDS

SSE_PREFIX = "data: "


class ImagesEvent(BaseModel):
    type: Literal["images"] = "images"
    data: List[str]

class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    data: str

class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    data: str

class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    data: Optional[str] = None


SSEEvent = Annotated[Union[ImagesEvent, ContentEvent, ErrorEvent, DoneEvent], Field(discriminator="type")]
_event_adapter = TypeAdapter(SSEEvent)


def format_sse(event: BaseModel) -> str:
    return f"{SSE_PREFIX}{event.model_dump_json(exclude_none=True)}\n\n"


def parse_sse_line(line: str) -> Optional[SSEEvent]:
    """Retourne l'évènement d'une ligne `data: ...`, None pour toute autre ligne."""
    if not line.startswith(SSE_PREFIX):
        return None
    return _event_adapter.validate_json(line[len(SSE_PREFIX):])


async def relay_analysis(
    streamer,
    chart_urls: List[str],
    symbol: Optional[str],
    user_id: str,
    is_disconnected: Callable[[], Awaitable[bool]] = None,
    timeout: float = ANALYSIS_TIMEOUT_SECONDS,
) -> AsyncIterator[str]:
    """
    Produit les lignes SSE d'une analyse.

    Toute erreur devient un unique évènement error. Si le client se déconnecte,
    le flux amont est fermé et le relais s'arrête sans évènement terminal.
    """
    yield format_sse(ImagesEvent(data=list(chart_urls)))

    if not chart_urls:
        yield format_sse(ErrorEvent(data="No chart images to analyze"))
        return

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    tokens = streamer.astream_analysis(chart_urls, symbol, user_id)
    token_count = 0

    try:
        while True:
            if is_disconnected is not None and await is_disconnected():
                logger.warning(f"🔌 Client déconnecté pendant l'analyse de {symbol}, arrêt du flux ({token_count} tokens)")
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            try:
                token = await asyncio.wait_for(tokens.__anext__(), timeout=remaining)
            except StopAsyncIteration:
                break

            token_count += 1
            yield format_sse(ContentEvent(data=token))

        logger.info(f"✅ Analyse de {symbol} terminée ({token_count} tokens)")
        yield format_sse(DoneEvent())
    except asyncio.TimeoutError:
        logger.error(f"⏱️ Analyse de {symbol} interrompue après {timeout}s")
        yield format_sse(ErrorEvent(data=f"Analysis timed out after {timeout:g} seconds"))
    except Exception as e:
        logger.error(f"❌ Erreur pendant l'analyse de {symbol} : {e}")
        yield format_sse(ErrorEvent(data=str(e) or e.__class__.__name__))
    finally:
        await tokens.aclose()
