"""Normalize a Gmail API message envelope (format=full) into stored fields."""
from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List

from .html_cleaner import clean_html_content

log = logging.getLogger(__name__)


@dataclass
class ExtractedContent:
    subject: str = ""
    sender: str = ""
    recipients: List[str] = field(default_factory=list)
    body: str = ""
    html_body: str = ""
    clean_text: str = ""


def decode_body_data(data: str | None) -> str:
    """Decode a base64url body payload to text; undecodable data yields ''."""
    if not data:
        return ""
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError, TypeError) as e:
        log.debug("body_decode_failed", exc_info=e)
        return ""
    return raw.decode("utf-8", errors="replace")


def _header(headers: List[Dict], name: str) -> str:
    # exact-case match, same as the provider returns them
    for h in headers:
        if isinstance(h, dict) and h.get("name") == name:
            value = h.get("value")
            return value if isinstance(value, str) else ""
    return ""


def _body_data(part: Dict) -> str | None:
    body = part.get("body")
    data = body.get("data") if isinstance(body, dict) else None
    return data if isinstance(data, str) else None


def _walk_parts(parts: List[Dict]) -> Iterator[Dict]:
    for part in parts or []:
        if not isinstance(part, dict):
            continue
        yield part
        if part.get("parts"):
            yield from _walk_parts(part["parts"])


def split_recipients(*values: str) -> List[str]:
    recipients: List[str] = []
    for value in values:
        if not value:
            continue
        recipients.extend(a.strip() for a in value.split(","))
    return recipients


def extract_email_content(message: Dict | None) -> ExtractedContent:
    if not isinstance(message, dict):
        return ExtractedContent()
    payload = message.get("payload")
    if not isinstance(payload, dict):
        payload = {}
    headers = payload.get("headers")
    if not isinstance(headers, list):
        headers = []
    content = ExtractedContent(
        subject=_header(headers, "Subject"),
        sender=_header(headers, "From"),
        recipients=split_recipients(_header(headers, "To"), _header(headers, "Cc")),
    )

    inline = _body_data(payload)
    if inline:
        content.body = decode_body_data(inline)
        if payload.get("mimeType") == "text/html":
            content.html_body = content.body
    else:
        seen_plain = seen_html = False
        parts = payload.get("parts")
        for part in _walk_parts(parts if isinstance(parts, list) else []):
            mime = part.get("mimeType")
            data = _body_data(part)
            if not data:
                continue
            if mime == "text/plain" and not seen_plain:
                seen_plain = True
                content.body = decode_body_data(data)
            elif mime == "text/html" and not seen_html:
                seen_html = True
                content.html_body = decode_body_data(data)
            if seen_plain and seen_html:
                break

    content.clean_text = clean_html_content(content.html_body) if content.html_body else content.body
    return content


def build_classifier_input(content: ExtractedContent) -> str:
    text = content.subject
    if content.clean_text and len(content.clean_text.strip()) > 10:
        text += "\n\n" + content.clean_text
    elif content.body and len(content.body.strip()) > 10:
        text += "\n\n" + content.body
    return text
