"""Find how to unsubscribe from a message: URL patterns, then address patterns, then the model."""
from typing import Dict, Any
import logging, re

from . import classifier

log = logging.getLogger(__name__)

_URL_CHARS = r'[^\s<>"{}|\\^`\[\]]+'

URL_PATTERNS = [
    re.compile(r'unsubscribe\s*:\s*(https?://' + _URL_CHARS + ')', re.I),
    re.compile(r'unsubscribe\s*at\s*(https?://' + _URL_CHARS + ')', re.I),
    re.compile(r'click\s*here\s*to\s*unsubscribe[^>]*href\s*=\s*["\']([^"\']+)["\']', re.I),
    re.compile(r'<a[^>]*unsubscribe[^>]*href\s*=\s*["\']([^"\']+)["\'][^>]*>', re.I),
    re.compile(r'unsubscribe\s*link[^>]*href\s*=\s*["\']([^"\']+)["\']', re.I),
    re.compile(r'opt.?out[^>]*href\s*=\s*["\']([^"\']+)["\']', re.I),
    re.compile(r'remove\s*me[^>]*href\s*=\s*["\']([^"\']+)["\']', re.I),
    re.compile(r'cancel\s*subscription[^>]*href\s*=\s*["\']([^"\']+)["\']', re.I),
]

ADDRESS_PATTERNS = [
    re.compile(r'\b(unsubscribe)\s*@\s*([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})', re.I),
    re.compile(r'\b(remove)\s*@\s*([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})', re.I),
    re.compile(r'\b(opt-?out)\s*@\s*([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})', re.I),
]

NOT_FOUND: Dict[str, Any] = {"url": None, "email": None, "found": False}


def match_unsubscribe_patterns(content: str) -> Dict[str, Any] | None:
    for pattern in URL_PATTERNS:
        m = pattern.search(content)
        if m:
            return {"url": m.group(1), "email": None, "found": True}
    for pattern in ADDRESS_PATTERNS:
        m = pattern.search(content)
        if m:
            return {"url": None, "email": f"{m.group(1)}@{m.group(2)}", "found": True}
    return None


async def extract_unsubscribe_info(content: str) -> Dict[str, Any]:
    """Return {url, email, found}; found is False when nothing usable turns up."""
    content = content or ''
    matched = match_unsubscribe_patterns(content)
    if matched:
        return matched
    try:
        info = await classifier.extract_unsubscribe_with_oracle(content)
    except Exception as e:  # OracleError or anything the provider client lets through
        log.info("unsubscribe_oracle_unavailable", extra={"error_type": type(e).__name__})
        return dict(NOT_FOUND)
    if not info.found or not (info.url or info.email):
        return dict(NOT_FOUND)
    return {"url": info.url, "email": info.email, "found": True}
