import json
from html import escape

from .capture import normalize_interval

# Page minimale servie sur /chart, c'est elle que le navigateur headless photographie.
CHART_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{title}</title>
  <style>html, body {{ margin: 0; height: 100%; overflow: hidden; }}</style>
</head>
<body>
  <div class="tradingview-widget-container" style="height:100vh;width:100%">
    <div id="tradingview-chart" style="height:100%;width:100%"></div>
  </div>
  <script src="https://s3.tradingview.com/tv.js"></script>
  <script>new TradingView.widget({config});</script>
</body>
</html>
"""


def widget_config(symbol: str, interval: str) -> dict:
    return {
        "container_id": "tradingview-chart",
        "symbol": symbol,
        "interval": normalize_interval(interval),
        "theme": "light",
        "locale": "en",
        "toolbar_bg": "#f5f5f5",
        "enable_publishing": False,
        "allow_symbol_change": False,
        "details": False,
        "hotlist": False,
        "calendar": False,
        "studies": ["RSI@tv-basicstudies", "MACD@tv-basicstudies", "BB@tv-basicstudies"],
        "withdateranges": False,
        "autosize": True,
        "hide_legend": True,
        "save_image": False,
    }


def render_chart_page(symbol: str, interval: str = "D") -> str:
    # "</" échappé pour qu'un symbole ne puisse pas fermer la balise <script>
    config = json.dumps(widget_config(symbol, interval)).replace("</", "<\\/")
    return CHART_PAGE_TEMPLATE.format(title=escape(f"{symbol} chart"), config=config)
