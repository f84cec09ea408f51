from typing import Dict, List

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from loguru import logger

from config import ASSISTANT_MODEL, ASSISTANT_TEMPERATURE, OPENAI_API_KEY, OPENAI_BASE_URL
from .prompts import STOCK_AGENT_SYSTEM_PROMPT, STOCK_AGENT_PROMPT, format_conversation_history


def create_assistant_llm() -> ChatOpenAI:
    return ChatOpenAI(
        model=ASSISTANT_MODEL,
        temperature=ASSISTANT_TEMPERATURE,  # réponses plus factuelles
        api_key=OPENAI_API_KEY or None,
        base_url=OPENAI_BASE_URL,
    )


class StockAssistantAgent:
    """
    Répond aux questions de suivi sur une analyse déjà produite.

    Chaîne : prompt système + prompt humain (historique, analyse, question) -> LLM -> texte.
    """

    def __init__(self, llm):
        prompt = ChatPromptTemplate.from_messages([
            ("system", STOCK_AGENT_SYSTEM_PROMPT),
            ("human", STOCK_AGENT_PROMPT),
        ])
        self.chain = prompt | llm | StrOutputParser()

    async def process_query(
        self,
        analysis: str,
        question: str,
        conversation_history: List[Dict[str, str]] = None,
        user_id: str = "anonymous",
    ) -> str:
        history = conversation_history or []
        logger.info(f"💬 Question de {user_id} ({len(history)} messages de contexte)")
        return await self.chain.ainvoke(
            {
                "conversation_history": format_conversation_history(history),
                "analysis": analysis,
                "question": question,
            },
            config={
                "tags": ["stock-assistant", "finance"],
                "metadata": {
                    "user_id": user_id,
                    "question_length": len(question),
                    "history_length": len(history),
                },
            },
        )
