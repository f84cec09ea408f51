import re

# Ordre important : les puces "- **Label:**" avant les "**Label:**" isolés,
# les en-têtes spécifiques (Summary, Overall Outlook) avant le ### générique.
_RULES = [
    (re.compile(r"^# ([\w:.\-]+)", re.M), r'<h1><span class="symbol-header">\1</span></h1>'),
    (re.compile(r"^## ([\w-]+) Timeframe", re.M), r'<h2><span class="timeframe-header">\1 Timeframe</span></h2>'),
    (re.compile(r"^### Summary", re.M), r'<h3><span class="summary-header">Summary</span></h3>'),
    (re.compile(r"^### Overall Outlook", re.M), r'<h3><span class="outlook-header">Overall Outlook</span></h3>'),
    (re.compile(r"^### ([\w-]+)", re.M), r'<h3><span class="section-header">\1</span></h3>'),
    (re.compile(r"- \*\*([\w\s-]+):\*\*"), r'- <strong><span class="list-indicator">\1:</span></strong>'),
    (re.compile(r"\*\*([\w\s-]+):\*\*"), r'<strong><span class="technical-indicator">\1:</span></strong>'),
    (re.compile(r"\*\*(.+?)\*\*"), r"<strong>\1</strong>"),
]


def format_technical_analysis(content: str) -> str:
    """
    Transforme la sortie markdown brute du modèle en HTML stylable.

    Non idempotent : à appliquer une seule fois, au texte brut, pour l'affichage
    uniquement (le texte stocké reste le markdown d'origine).
    """
    if not content:
        return content

    formatted = content
    for pattern, replacement in _RULES:
        formatted = pattern.sub(replacement, formatted)
    return formatted.replace("\n", "<br />")
