"""
Prompts envoyés aux modèles.

Les en-têtes markdown imposés (## ... Timeframe, **Trend:**, ### Summary) sont
reconnus par formatting.format_technical_analysis : les deux gabarits
d'analyse doivent rester synchronisés avec lui.
"""
from typing import List, Mapping


def get_chart_analysis_prompt(symbol: str = None) -> str:
    """Gabarit court : un seul graphique journalier."""
    return f"""Please analyze these charts for {symbol or 'the asset'} and provide technical analysis. The chart is in 1d timeframes.

Your response MUST follow this specific format:
# {symbol or 'Asset'}

## Daily Timeframe
- **Trend:** [current trend]
- **Key Levels:** [support/resistance levels]
- **Action:** [recommendation]

### Summary
[brief summary and overall recommendation]"""


def _timeframe_section(title: str) -> str:
    return f"""## {title} Timeframe
### Price
- **Trend:** [current trend]
- **Key Levels:** [support/resistance levels]
- **Action:** [recommendation]

### Volume
- **Analysis:** [volume analysis]
"""


def get_chart_actual_analysis_prompt(symbol: str = None) -> str:
    """Gabarit complet : graphiques 1h, 4h et 1d."""
    sections = "\n".join(_timeframe_section(t) for t in ("1-Hour", "4-Hour", "Daily"))
    return f"""Please analyze these charts for {symbol or 'the asset'} and provide technical analysis. The charts are in 1h, 4h, and 1d timeframes.

Format your entire response using Markdown syntax only. Do not use any HTML tags (like <span>).

Your response MUST follow this specific format:
# {symbol or 'Asset'}

{sections}
### Summary
[brief summary and overall recommendation]"""


def build_analysis_prompt(symbol: str, chart_count: int) -> str:
    if chart_count <= 1:
        return get_chart_analysis_prompt(symbol)
    return get_chart_actual_analysis_prompt(symbol)


# --- Assistant de suivi (questions sur une analyse existante) ---

STOCK_AGENT_SYSTEM_PROMPT = """You are a financial assistant specializing in stock market analysis and trading.
Your role is to assist users with questions about their stock analysis and provide helpful information about:

- Technical analysis indicators (RSI, MACD, Moving Averages, etc.)
- Chart patterns and their significance
- Market trends and potential implications
- Trading strategies and risk management
- General stock market concepts and terminology

Limitations:
- You cannot provide real-time stock prices or market data
- You should not make specific buy/sell recommendations
- You cannot predict future stock movements with certainty

When responding:
1. Be concise and educational
2. Clarify complex financial terms
3. Provide context for indicators and patterns mentioned
4. Be transparent about the limitations of your advice
5. Emphasize the importance of users doing their own research

Remember that all financial decisions ultimately rest with the user."""

STOCK_AGENT_PROMPT = """
Based on the following context about a stock analysis, conversation history, and the user's question, provide a helpful response:

{conversation_history}
ORIGINAL ANALYSIS:
{analysis}

USER QUESTION:
{question}

Respond in a helpful, educational manner. Focus on explaining concepts and providing context rather than making specific predictions or investment recommendations.
"""


def format_conversation_history(history: List[Mapping[str, str]]) -> str:
    if not history:
        return ""
    lines = [f"{msg['role'].upper()}: {msg['content']}" for msg in history]
    return "PREVIOUS CONVERSATION:\n" + "\n".join(lines) + "\n\n"
