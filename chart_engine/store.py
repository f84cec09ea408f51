"""
Accès aux messages et analyses (SQLAlchemy).

Les stores reçoivent la session de la requête ; aucune session globale.
"""
import math
import re
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, HISTORY_CONTEXT_LIMIT, ANALYSIS_HISTORY_LIMIT
from models import Analysis, AnalysisStatus, ChartImage, Message, MessageRole, Platform
from schemas import PaginationInfo
from .errors import (
    AnalysisNotFoundError, InvalidStatusTransitionError, MessageNotFoundError, MessageValidationError,
)

ANALYSIS_KEYWORD = "Timeframe"  # présent dans toute analyse complète (## Daily Timeframe)
POSITIONAL_INTERVALS = ["1hr", "4hr", "1d"]
_INTERVAL_FROM_PATH = re.compile(r"_([^_/]+)_\d+(?:-[0-9a-f]+)?\.\w+$")


def normalize_role(role: str) -> str:
    value = (role or "").strip().upper()
    if value not in MessageRole.__members__:
        raise MessageValidationError(
            f"Invalid role '{role}': expected one of {', '.join(MessageRole.__members__)}"
        )
    return value


def clamp_page_size(page_size: Optional[int]) -> int:
    if not page_size or page_size < 1:
        return min(DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE)
    return min(page_size, MAX_PAGE_SIZE)


class MessageStore:
    def __init__(self, db: Session):
        self.db = db

    def append(self, content: str, user_id: str, role: str, analysis_id: int = None) -> Message:
        if not isinstance(content, str) or not content.strip():
            raise MessageValidationError("Missing required field: content must be a non-empty string")
        if not isinstance(user_id, str) or not user_id.strip():
            raise MessageValidationError("Missing required field: userId must be a non-empty string")

        message = Message(content=content, user_id=user_id, role=normalize_role(role), analysis_id=analysis_id)
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    def get(self, message_id: int) -> Message:
        message = self.db.get(Message, message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found")
        return message

    def delete(self, message_id: int) -> None:
        message = self.get(message_id)
        self.db.delete(message)
        self.db.commit()

    def list_page(
        self, user_id: str, page: int = 1, page_size: int = None, cursor: int = None
    ) -> Tuple[List[Message], PaginationInfo, int]:
        """
        Page de messages d'un utilisateur, retournée dans l'ordre chronologique.

        Avec un curseur : messages d'id < cursor, du plus récent au plus ancien,
        le curseur l'emporte sur page. Sinon pagination par offset.
        """
        size = clamp_page_size(page_size)
        page = page if page and page > 0 else 1

        base = self.db.query(Message).filter(Message.user_id == user_id)
        total = base.count()

        query = base.order_by(Message.id.desc())
        if cursor is not None:
            query = query.filter(Message.id < cursor)
        else:
            query = query.offset((page - 1) * size)
        rows = query.limit(size).all()

        has_more = len(rows) == size
        pagination = PaginationInfo(
            page=page,
            page_size=size,
            total_pages=math.ceil(total / size),
            has_more=has_more,
            next_cursor=rows[-1].id if has_more else None,
        )
        rows.reverse()
        return rows, pagination, total

    def last_analysis(self, user_id: str) -> Optional[Message]:
        """Dernière analyse (SYSTEM ou ASSISTANT), de préférence un rapport complet."""
        query = (
            self.db.query(Message)
            .filter(Message.user_id == user_id)
            .filter(Message.role.in_([MessageRole.SYSTEM.value, MessageRole.ASSISTANT.value]))
            .order_by(Message.id.desc())
        )
        return query.filter(Message.content.contains(ANALYSIS_KEYWORD)).first() or query.first()

    def recent_history(self, user_id: str, limit: int = HISTORY_CONTEXT_LIMIT) -> List[Dict[str, str]]:
        rows = (
            self.db.query(Message)
            .filter(Message.user_id == user_id)
            .order_by(Message.id.desc())
            .limit(limit)
            .all()
        )
        rows.reverse()
        return [{"role": r.role.lower(), "content": r.content} for r in rows]


# Machine à états de Analysis.status : uniquement vers l'avant
ALLOWED_TRANSITIONS = {
    AnalysisStatus.GENERATING_CHARTS: {AnalysisStatus.ANALYZING, AnalysisStatus.FAILED},
    AnalysisStatus.ANALYZING: {AnalysisStatus.COMPLETED, AnalysisStatus.FAILED},
    AnalysisStatus.COMPLETED: set(),
    AnalysisStatus.FAILED: set(),
}


def interval_from_chart_url(chart_url: str, position: int) -> str:
    match = _INTERVAL_FROM_PATH.search(chart_url)
    if match:
        return match.group(1)
    return POSITIONAL_INTERVALS[min(position, len(POSITIONAL_INTERVALS) - 1)]


class AnalysisStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, symbol: str, user_id: str = None, platform: str = Platform.WEB.value) -> Analysis:
        try:
            platform = Platform((platform or Platform.WEB.value).upper()).value
        except ValueError:
            raise MessageValidationError(f"Invalid platform '{platform}'")
        analysis = Analysis(
            symbol=symbol, user_id=user_id, platform=platform, status=AnalysisStatus.GENERATING_CHARTS.value
        )
        self.db.add(analysis)
        self.db.commit()
        self.db.refresh(analysis)
        return analysis

    def get(self, analysis_id: int) -> Analysis:
        analysis = self.db.get(Analysis, analysis_id)
        if analysis is None:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")
        return analysis

    def set_status(self, analysis: Analysis, status: AnalysisStatus, error: str = None) -> Analysis:
        current = AnalysisStatus(analysis.status)
        status = AnalysisStatus(status)
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(f"Cannot move analysis {analysis.id} from {current.value} to {status.value}")
        analysis.status = status.value
        if error is not None:
            analysis.error = error
        self.db.commit()
        self.db.refresh(analysis)
        return analysis

    def add_chart_image(self, analysis: Analysis, interval: str, image_path: str = "", error: str = None) -> ChartImage:
        image = ChartImage(analysis_id=analysis.id, interval=interval, image_path=image_path, error=error)
        self.db.add(image)
        self.db.commit()
        return image

    def save_completed(self, symbol: str, analysis_text: str, chart_urls: List[str], user_id: str = None) -> Analysis:
        """Enregistre une analyse déjà terminée côté client, en une seule transaction."""
        analysis = Analysis(symbol=symbol, user_id=user_id, status=AnalysisStatus.COMPLETED.value)
        analysis.messages = [
            Message(content=f"Analyzing {symbol}", role=MessageRole.USER.value, user_id=user_id),
            Message(content=analysis_text, role=MessageRole.ASSISTANT.value, user_id=user_id),
        ]
        analysis.chart_images = [
            ChartImage(interval=interval_from_chart_url(url, i), image_path=url)
            for i, url in enumerate(chart_urls)
        ]
        self.db.add(analysis)
        self.db.commit()
        self.db.refresh(analysis)
        return analysis

    def history(self, user_id: str, limit: int = ANALYSIS_HISTORY_LIMIT) -> List[Analysis]:
        return (
            self.db.query(Analysis)
            .options(selectinload(Analysis.messages), selectinload(Analysis.chart_images))
            .filter(Analysis.user_id == user_id)
            .order_by(Analysis.id.desc())
            .limit(limit)
            .all()
        )
