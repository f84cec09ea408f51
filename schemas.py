from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime


class CamelModel(BaseModel):
    """Le front envoie et reçoit du camelCase (userId, chartUrls...) ; alias ou nom de champ acceptés."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Messages ---

class MessageCreate(CamelModel):
    content: str
    user_id: str
    role: str

class MessageSchema(CamelModel):
    id: int
    user_id: Optional[str] = None
    analysis_id: Optional[int] = None
    content: str
    role: str
    created_at: datetime

class DeleteResponse(CamelModel):
    success: bool = True

class ConversationMessage(CamelModel):
    role: str
    content: str


# --- Historique paginé ---

class ChatHistoryRequest(CamelModel):
    user_id: str
    symbol: Optional[str] = None
    page: Optional[int] = 1
    page_size: Optional[int] = None
    cursor: Optional[int] = None

class PaginationInfo(CamelModel):
    page: int
    page_size: int
    total_pages: int
    has_more: bool
    next_cursor: Optional[int] = None

class ChatHistoryResponse(CamelModel):
    messages: List[MessageSchema]
    count: int
    total_count: int
    pagination: PaginationInfo
    symbol: Optional[str] = None


# --- Graphiques et analyse ---

class GenerateChartsRequest(CamelModel):
    symbol: str

class GenerateChartsResponse(CamelModel):
    chart_urls: List[str]

class GenerateChartRequest(CamelModel):
    symbol: str
    interval: str = "D"

class GenerateChartResponse(CamelModel):
    chart_url: str

class AnalyzeChartsRequest(CamelModel):
    chart_urls: List[str]
    symbol: Optional[str] = None
    user_id: str = "anonymous"

class AnalysisResult(CamelModel):
    id: int
    status: str
    chart_urls: List[str]
    analysis: str

class SaveAnalysisRequest(CamelModel):
    symbol: str
    analysis: str
    chart_urls: List[str]
    user_id: Optional[str] = None

class AnalysisHistoryMessage(CamelModel):
    id: int
    content: str
    role: str
    timestamp: datetime

class AnalysisHistoryItem(CamelModel):
    id: int
    symbol: str
    status: str
    created_at: datetime
    messages: List[AnalysisHistoryMessage] = []
    chart_urls: List[str] = []


# --- Assistant ---

class StockAssistantRequest(CamelModel):
    question: str
    user_id: str
    analysis: Optional[str] = None
    symbol: Optional[str] = None
    conversation_history: Optional[List[ConversationMessage]] = None

class StockAssistantResponse(CamelModel):
    response: str
    conversation_history: List[ConversationMessage]
    status: str = "success"


# --- Recherche de symboles ---

class SymbolResult(CamelModel):
    id: str
    symbol: str
    exchange: str
    full_exchange: str
    description: Optional[str] = None
    type: Optional[str] = None
    currency_code: Optional[str] = None
    country: Optional[str] = None
    pro: Optional[bool] = None
    typespecs: Optional[List[str]] = None

class SymbolSearchResponse(CamelModel):
    symbols: List[SymbolResult] = []
    symbols_remaining: int = 0
