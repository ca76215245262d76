# --- Global log sanitizer: keep product payloads from flooding the log ----------
import logging, re

MAX_MESSAGE_CHARS = 2000

_HTML_SIG_RE = re.compile(r'(?is)<(p|div|ul|li|br|span|table|h[1-6]|html|!DOCTYPE)[\s>/]')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()

def summarize_html(s: str, limit: int = 200) -> str:
    preview = _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"

def truncate(s: str, limit: int = MAX_MESSAGE_CHARS) -> str:
    if len(s) <= limit:
        return s
    return f"{s[:limit]} [{len(s) - limit} chars trimmed]"

class _PayloadTrimFilter(logging.Filter):
    """
    Descriptions with markup are summarized, anything else over the limit is cut.
    Never drops a record.
    """
    def __init__(self, limit: int = MAX_MESSAGE_CHARS):
        super().__init__()
        self.limit = limit

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if isinstance(msg, str) and len(msg) > 200 and _HTML_SIG_RE.search(msg):
            record.msg = summarize_html(msg)
            record.args = ()
        elif isinstance(msg, str) and len(msg) > self.limit:
            record.msg = truncate(msg, self.limit)
            record.args = ()
        return True

def install(names=("", "uvicorn", "uvicorn.error")) -> None:
    """Install once on common loggers (root + uvicorn family)."""
    for _name in names:
        log = logging.getLogger(_name)
        if not any(isinstance(f, _PayloadTrimFilter) for f in log.filters):
            log.addFilter(_PayloadTrimFilter())

install()
# --------------------------------------------------------------------------------
