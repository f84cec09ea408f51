from chart_engine.formatting import format_technical_analysis


def test_headers_are_tagged():
    html = format_technical_analysis("# AAPL\n## Daily Timeframe\n### Price\n### Summary\n### Overall Outlook")
    assert '<h1><span class="symbol-header">AAPL</span></h1>' in html
    assert '<h2><span class="timeframe-header">Daily Timeframe</span></h2>' in html
    assert '<h3><span class="section-header">Price</span></h3>' in html
    assert '<h3><span class="summary-header">Summary</span></h3>' in html
    assert '<h3><span class="outlook-header">Overall Outlook</span></h3>' in html


def test_indicators_and_bold():
    html = format_technical_analysis("- **Trend:** Bullish\n**RSI:** 62\nThis is **important**")
    assert '- <strong><span class="list-indicator">Trend:</span></strong> Bullish' in html
    assert '<strong><span class="technical-indicator">RSI:</span></strong> 62' in html
    assert "This is <strong>important</strong>" in html


def test_newlines_become_line_breaks():
    assert format_technical_analysis("a\nb") == "a<br />b"


def test_empty_input_is_returned_unchanged():
    assert format_technical_analysis("") == ""
    assert format_technical_analysis(None) is None


def test_plain_text_is_untouched():
    assert format_technical_analysis("No markdown here") == "No markdown here"
