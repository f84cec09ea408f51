import enum
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base


class MessageRole(str, enum.Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"


class AnalysisStatus(str, enum.Enum):
    GENERATING_CHARTS = "GENERATING_CHARTS"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Platform(str, enum.Enum):
    WEB = "WEB"
    TELEGRAM = "TELEGRAM"


class Analysis(Base):
    __tablename__ = "analyses"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=True)
    platform = Column(String, default=Platform.WEB.value)
    status = Column(String, default=AnalysisStatus.GENERATING_CHARTS.value, nullable=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    messages = relationship("Message", back_populates="analysis", order_by="Message.id")
    chart_images = relationship("ChartImage", back_populates="analysis", cascade="all, delete-orphan", order_by="ChartImage.id")

class ChartImage(Base):
    __tablename__ = "chart_images"

    id = Column(Integer, primary_key=True, index=True)
    analysis_id = Column(Integer, ForeignKey("analyses.id"), nullable=False)
    interval = Column(String, nullable=False)
    image_path = Column(String, default="")  # vide si la capture a échoué
    error = Column(Text, nullable=True)

    analysis = relationship("Analysis", back_populates="chart_images")

class Message(Base):
    __tablename__ = "messages"

    # id auto-incrémenté : l'ordre des id suit l'ordre d'insertion (pagination par curseur)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=True)
    analysis_id = Column(Integer, ForeignKey("analyses.id"), nullable=True)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    analysis = relationship("Analysis", back_populates="messages")
