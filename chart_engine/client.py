"""
Client Python de l'API ChartIQ (équivalent de l'interface de chat).

ChatState est l'état affiché : liste de messages, accumulateur du flux en cours
et état du tour. ChatSession pilote l'API avec httpx ; tout message utilisateur
est écrit de façon provisoire (TentativeMessage) et supprimé côté serveur si le
tour échoue.
"""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import httpx
from loguru import logger

from models import MessageRole
from .errors import ChartIQError
from .formatting import format_technical_analysis
from .sse import ContentEvent, DoneEvent, ErrorEvent, ImagesEvent, parse_sse_line
from .store import ANALYSIS_KEYWORD

WELCOME_MESSAGE = "Welcome to ChartIQ Assistant! What would you like to analyze today?"


def _error_detail(response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    detail = data.get("detail", data) if isinstance(data, dict) else data
    if isinstance(detail, dict):
        detail = detail.get("details") or detail.get("error") or detail
    return str(detail)


def ensure_success(response, action: str):
    """Lève ChartIQError pour toute réponse non 2xx, quel que soit le client HTTP utilisé."""
    if 200 <= response.status_code < 300:
        return response
    response.read()
    raise ChartIQError(f"{action} failed ({response.status_code}): {_error_detail(response)}")


@dataclass
class ChatMessage:
    role: str
    content: str
    id: Optional[int] = None  # id serveur, None tant que non persisté
    chart_urls: List[str] = field(default_factory=list)
    local_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def html(self) -> str:
        # formatage appliqué une seule fois, à l'affichage
        return format_technical_analysis(self.content)

    @classmethod
    def from_api(cls, data: dict) -> "ChatMessage":
        return cls(role=data["role"], content=data["content"], id=data["id"])


class TurnState(str, Enum):
    IDLE = "idle"
    USER_MESSAGE_SAVED = "user_message_saved"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


TURN_TRANSITIONS = {
    TurnState.IDLE: {TurnState.USER_MESSAGE_SAVED, TurnState.FAILED},
    TurnState.USER_MESSAGE_SAVED: {TurnState.STREAMING, TurnState.COMPLETED, TurnState.FAILED},
    TurnState.STREAMING: {TurnState.COMPLETED, TurnState.FAILED},
    TurnState.COMPLETED: {TurnState.IDLE},
    TurnState.FAILED: {TurnState.IDLE},
}


class ChatState:
    def __init__(self):
        self.messages: List[ChatMessage] = []
        self.accumulator = ""
        self.turn = TurnState.IDLE

    def begin_turn(self):
        # un nouveau tour repart toujours de IDLE, même si le précédent a été interrompu
        self.turn = TurnState.IDLE
        self.accumulator = ""

    def advance(self, state: TurnState):
        if state not in TURN_TRANSITIONS[self.turn]:
            raise ValueError(f"Invalid turn transition {self.turn.value} -> {state.value}")
        self.turn = state

    def find(self, local_id: str) -> Optional[ChatMessage]:
        return next((m for m in self.messages if m.local_id == local_id), None)

    def add(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        return message

    def prepend(self, messages: List[ChatMessage]):
        self.messages = list(messages) + self.messages

    def append_token(self, local_id: str, token: str) -> ChatMessage:
        self.accumulator += token
        message = self.find(local_id)
        message.content = self.accumulator
        return message

    def replace(self, local_id: str, message: ChatMessage) -> ChatMessage:
        for i, current in enumerate(self.messages):
            if current.local_id == local_id:
                self.messages[i] = message
                return message
        raise KeyError(local_id)

    def remove(self, local_id: str):
        self.messages = [m for m in self.messages if m.local_id != local_id]

    def clear(self):
        self.messages = []
        self.accumulator = ""
        self.turn = TurnState.IDLE


class TentativeMessage:
    """
    Écriture en deux temps : enregistrée à l'entrée du bloc, supprimée à la
    sortie si confirm() n'a pas été appelé.
    """

    def __init__(self, session: "ChatSession", content: str, role: str):
        self.session = session
        self.content = content
        self.role = role
        self.saved: Optional[dict] = None
        self.confirmed = False

    def __enter__(self) -> "TentativeMessage":
        self.saved = self.session.save_message(self.content, self.role)
        return self

    def confirm(self):
        self.confirmed = True

    def __exit__(self, exc_type, exc, tb):
        if not self.confirmed and self.saved is not None:
            logger.info(f"↩️ Annulation du message {self.saved['id']}")
            self.session.remove_message(self.saved["id"])
        return False


class ChatSession:
    def __init__(self, http_client: httpx.Client, user_id: str, symbol: str = None, page_size: int = 20):
        self.http = http_client
        self.user_id = user_id
        self.symbol = symbol
        self.page_size = page_size
        self.state = ChatState()
        self.analysis: Optional[str] = None
        self.conversation_history: List[Dict[str, str]] = []
        self.next_cursor: Optional[int] = None
        self.has_more = True

    # --- Persistance (les échecs sont journalisés, jamais levés) ---

    def save_message(self, content: str, role: str) -> Optional[dict]:
        try:
            response = self.http.post(
                "/messages", json={"content": content, "userId": self.user_id, "role": role}
            )
            return ensure_success(response, "Saving message").json()
        except (httpx.HTTPError, ChartIQError) as e:
            logger.warning(f"⚠️ Message non enregistré : {e}")
            return None

    def remove_message(self, message_id: int) -> bool:
        try:
            response = self.http.delete(f"/messages/{message_id}")
            ensure_success(response, f"Deleting message {message_id}")
            return True
        except (httpx.HTTPError, ChartIQError) as e:
            logger.warning(f"⚠️ Suppression du message {message_id} impossible : {e}")
            return False

    def tentative(self, content: str, role: str = MessageRole.USER.value) -> TentativeMessage:
        return TentativeMessage(self, content, role)

    # --- Historique ---

    def load_history(self, reset: bool = False) -> List[ChatMessage]:
        """Charge la page précédente (curseur) et la place avant les messages affichés."""
        if reset:
            self.state.clear()
            self.next_cursor = None
            self.has_more = True
        if not self.has_more:
            return []

        payload = {"userId": self.user_id, "symbol": self.symbol, "pageSize": self.page_size}
        if self.next_cursor is not None:
            payload["cursor"] = self.next_cursor
        try:
            response = self.http.post("/chat-message", json=payload)
            data = ensure_success(response, "Loading history").json()
        except (httpx.HTTPError, ChartIQError) as e:
            logger.warning(f"⚠️ Historique indisponible : {e}")
            return []

        messages = [ChatMessage.from_api(m) for m in data["messages"]]
        self.state.prepend(messages)
        self.has_more = data["pagination"]["hasMore"]
        self.next_cursor = data["pagination"]["nextCursor"]

        if self.analysis is None:
            analyses = [
                m.content for m in messages
                if m.role != MessageRole.USER.value and ANALYSIS_KEYWORD in m.content
            ]
            if analyses:
                self.analysis = analyses[-1]

        if reset and not messages:
            self.state.add(ChatMessage(role=MessageRole.ASSISTANT.value, content=WELCOME_MESSAGE))
        return messages

    # --- Analyse ---

    def _generate_charts(self, symbol: str) -> List[str]:
        response = self.http.post("/generate-charts", json={"symbol": symbol})
        return ensure_success(response, "Chart generation").json()["chartUrls"]

    def _stream_analysis(self, chart_urls: List[str], symbol: str, target: ChatMessage) -> str:
        payload = {"chartUrls": chart_urls, "symbol": symbol, "userId": self.user_id}
        with self.http.stream("POST", "/analyze-charts", json=payload) as response:
            ensure_success(response, "Analysis")
            for line in response.iter_lines():
                event = parse_sse_line(line)
                if event is None:
                    continue
                if isinstance(event, ImagesEvent):
                    target.chart_urls = event.data
                elif isinstance(event, ContentEvent):
                    self.state.append_token(target.local_id, event.data)
                elif isinstance(event, ErrorEvent):
                    raise ChartIQError(event.data)
                elif isinstance(event, DoneEvent):
                    break
        return self.state.accumulator

    def analyze(self, symbol: str) -> ChatMessage:
        """
        Un tour d'analyse complet. Retourne le message d'analyse affiché, ou le
        message d'excuse si le tour a échoué (le message utilisateur est alors
        retiré de l'écran et du serveur).
        """
        symbol = symbol.strip().upper()
        self.symbol = symbol
        self.state.begin_turn()
        user_message = self.state.add(ChatMessage(role=MessageRole.USER.value, content=f"Analyze {symbol}"))
        analysis_message = None

        try:
            with self.tentative(user_message.content) as tentative:
                if tentative.saved is not None:
                    user_message.id = tentative.saved["id"]
                self.state.advance(TurnState.USER_MESSAGE_SAVED)

                chart_urls = self._generate_charts(symbol)
                logger.info(f"🖼️ {len(chart_urls)} graphiques générés pour {symbol}")

                self.state.advance(TurnState.STREAMING)
                analysis_message = self.state.add(ChatMessage(role=MessageRole.SYSTEM.value, content=""))
                text = self._stream_analysis(chart_urls, symbol, analysis_message)
                if not text.strip():
                    raise ChartIQError("Empty analysis received")

                saved = self.save_message(text, MessageRole.SYSTEM.value)
                if saved is not None:
                    analysis_message.id = saved["id"]
                tentative.confirm()
        except (httpx.HTTPError, ChartIQError, KeyError, ValueError) as e:
            logger.error(f"❌ Analyse de {symbol} en échec : {e}")
            self.state.remove(user_message.local_id)
            if analysis_message is not None:
                self.state.remove(analysis_message.local_id)
            self.state.advance(TurnState.FAILED)
            return self.state.add(ChatMessage(
                role=MessageRole.ASSISTANT.value,
                content=f"Sorry, I encountered an error analyzing {symbol}. {e}",
            ))

        self.analysis = text
        self.conversation_history = []
        self.state.advance(TurnState.COMPLETED)
        return analysis_message

    # --- Questions de suivi ---

    def ask(self, question: str) -> ChatMessage:
        self.state.begin_turn()
        if not self.analysis:
            symbol = self.symbol or "this symbol"
            return self.state.add(ChatMessage(
                role=MessageRole.ASSISTANT.value,
                content=(
                    f"I need to analyze {symbol} first before I can answer questions about it. "
                    'Please type "analyze" to start the analysis.'
                ),
            ))

        user_message = self.state.add(ChatMessage(role=MessageRole.USER.value, content=question))
        payload = {
            "question": question,
            "userId": self.user_id,
            "symbol": self.symbol,
            "analysis": self.analysis,
            "conversationHistory": self.conversation_history,
        }
        try:
            with self.tentative(question) as tentative:
                if tentative.saved is not None:
                    user_message.id = tentative.saved["id"]
                self.state.advance(TurnState.USER_MESSAGE_SAVED)

                response = self.http.post("/stock-assistant", json=payload)
                data = ensure_success(response, "Stock assistant").json()
                tentative.confirm()
        except (httpx.HTTPError, ChartIQError, KeyError, ValueError) as e:
            logger.error(f"❌ Question de suivi en échec : {e}")
            self.state.remove(user_message.local_id)
            self.state.advance(TurnState.FAILED)
            return self.state.add(ChatMessage(
                role=MessageRole.ASSISTANT.value,
                content=f"Sorry, I couldn't answer your question. {e}",
            ))

        self.conversation_history = data["conversationHistory"]
        self.state.advance(TurnState.COMPLETED)
        return self.state.add(ChatMessage(role=MessageRole.ASSISTANT.value, content=data["response"]))
