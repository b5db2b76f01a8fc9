"""Convert arbitrary (often malformed) email HTML into readable plain text.

Three stages, each degrading to something more permissive:
  1. structural strip of document chrome (doctype, head, comments, office xml, scripts, styles)
  2. text extraction: links rewritten as ``text (url)``, tags dropped, entities decoded
  3. if that leaves almost nothing, redo stage 2 on the untouched input

`clean_html_content` is total: it returns a string for any input and never raises.
"""
import logging
import re
from typing import Optional

MIN_MEANINGFUL_CHARS = 20

_STRUCTURAL_PATTERNS = [
    re.compile(r'<!DOCTYPE[^>]*>', re.I),
    re.compile(r'<html[^>]*>', re.I),
    re.compile(r'</html>', re.I),
    re.compile(r'<head[^>]*>[\s\S]*?</head>', re.I),
    re.compile(r'<body[^>]*>', re.I),
    re.compile(r'</body>', re.I),
    # comments, including Outlook conditional blocks
    re.compile(r'<!--[\s\S]*?-->'),
    re.compile(r'<xml[^>]*>[\s\S]*?</xml>', re.I),
    re.compile(r'<o:[^>]*>[\s\S]*?</o:[^>]*>', re.I),
    re.compile(r'<o:[^>]*/>', re.I),
    re.compile(r'<script[^>]*>[\s\S]*?</script>', re.I),
    re.compile(r'<style[^>]*>[\s\S]*?</style>', re.I),
    re.compile(r'<meta[^>]*>', re.I),
    re.compile(r'<link[^>]*>', re.I),
    re.compile(r'<title[^>]*>[\s\S]*?</title>', re.I),
]

_LINK_RE = re.compile(r'<a[^>]*href="([^"]*)"[^>]*>(.*?)</a>', re.I)
_TAG_RE = re.compile(r'<[^>]*>')
_WS_RE = re.compile(r'\s+')

ENTITIES = [
    ('&nbsp;', ' '),
    ('&amp;', '&'),
    ('&lt;', '<'),
    ('&gt;', '>'),
    ('&quot;', '"'),
    ('&#39;', "'"),
    ('&#8202;', ' '),
]


def _decode_entities(text: str) -> str:
    for entity, char in ENTITIES:
        text = text.replace(entity, char)
    return text


def _structural_strip(html: str) -> str:
    for pattern in _STRUCTURAL_PATTERNS:
        html = pattern.sub('', html)
    return _WS_RE.sub(' ', html).strip()


def _extract_text(html: str) -> str:
    text = _LINK_RE.sub(r'\2 (\1)', html)
    text = _TAG_RE.sub(' ', text)
    text = _WS_RE.sub(' ', text).strip()
    return _decode_entities(text).strip()


def clean_html_content(html: Optional[str]) -> str:
    if html is None:
        return ''
    if not isinstance(html, str):
        html = str(html)
    try:
        text = _extract_text(_structural_strip(html))
        if len(text) > MIN_MEANINGFUL_CHARS:
            return text
        # the structural pass can eat everything in badly nested documents
        return _extract_text(html)
    except Exception as e:  # pragma: no cover - regexes above do not raise on str input
        logging.getLogger(__name__).warning("html_clean_failed", exc_info=e)
        return _last_resort(html)


def _last_resort(html: str) -> str:
    try:
        return _extract_text(html)
    except Exception:
        try:
            return _TAG_RE.sub(' ', html)
        except Exception:
            return html
