from typing import List, Dict, Any, Optional, Sequence
import asyncio, json, logging, os, time

import httpx
from pydantic import BaseModel, Field, StrictInt, ValidationError, field_validator

from ..core.errors import OracleError, OracleQuotaError, OracleResponseError, OracleUnavailableError

try:  # Gemini client (optional provider)
    import google.generativeai as genai  # type: ignore
    GEMINI_AVAILABLE = True
except ImportError:  # pragma: no cover
    genai = None  # type: ignore
    GEMINI_AVAILABLE = False

log = logging.getLogger(__name__)

NO_SUMMARY = 'No summary available'
NO_MATCH_SUMMARY = 'Email content analyzed but no clear category match found'
FALLBACK_CONFIDENCE_CAP = 0.7
FALLBACK_CONFIDENCE_STEP = 0.1

# keyword rules used when the model cannot be reached; keyed by category name (lowercase)
KEYWORD_RULES: Dict[str, List[str]] = {
    'promotion': [
        'promotion', 'promotional', 'sale', 'discount', 'offer', 'deal', 'special',
        'limited time', 'buy now', 'shop', 'store', 'coupon', 'marketing',
        'campaign', 'advertisement', 'sponsored',
    ],
    'newsletter': [
        'newsletter', 'digest', 'weekly', 'monthly', 'edition', 'issue',
        'unsubscribe', 'subscribers', 'read more', 'this week',
    ],
}
KEYWORD_RULES['promotions'] = KEYWORD_RULES['promotion']
KEYWORD_RULES['newsletters'] = KEYWORD_RULES['newsletter']

CATEGORIZE_SYSTEM_PROMPT = (
    "You are a helpful AI assistant that categorizes emails and provides meaningful summaries. "
    "Always respond with valid JSON. Provide specific, informative summaries that help users "
    "understand the email content."
)
UNSUBSCRIBE_SYSTEM_PROMPT = (
    "You are an expert at extracting unsubscribe information from emails. Return only valid JSON."
)

LAST_ORACLE_ERROR: dict | None = None  # {error_type, error_message, provider, ts}


class ClassificationResult(BaseModel):
    category_id: Optional[StrictInt] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    summary: str = NO_SUMMARY

    @field_validator('summary', mode='before')
    @classmethod
    def _summary_not_empty(cls, v):
        if v is None:
            return NO_SUMMARY
        if not isinstance(v, str):
            raise ValueError('summary must be a string')
        return v.strip() or NO_SUMMARY


class UnsubscribeInfo(BaseModel):
    url: Optional[str] = None
    email: Optional[str] = None
    found: bool = False

    @field_validator('url', 'email', mode='before')
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


def _provider() -> str:
    return os.getenv('LLM_PROVIDER', 'openai').lower()


def _timeout() -> float:
    return float(os.getenv('LLM_TIMEOUT', '30'))


def _truncate(content: str) -> str:
    max_chars = int(os.getenv('LLM_MAX_CONTENT_CHARS', '4000'))
    if len(content) > max_chars:
        return content[:max_chars] + "\n...[truncated]"
    return content


def _record_error(e: Exception):
    global LAST_ORACLE_ERROR
    LAST_ORACLE_ERROR = {
        "error_type": type(e).__name__,
        "error_message": str(e)[:500],
        "provider": _provider(),
        "ts": time.time(),
    }


def _join_content(content) -> str:
    # some providers return a list of segments instead of a string
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, dict):
                for k in ('text', 'content', 'value'):
                    v = part.get(k)
                    if isinstance(v, str) and v.strip():
                        parts.append(v.strip())
            elif isinstance(part, str) and part.strip():
                parts.append(part.strip())
        return "\n".join(parts).strip()
    if isinstance(content, str):
        return content.strip()
    return ''


async def _chat_completion(system: str, prompt: str, temperature: float, max_tokens: int) -> str:
    provider = _provider()
    if provider in {'openrouter', 'or'}:
        api_key = os.getenv('OPENROUTER_API_KEY')
        endpoint = os.getenv('OPENROUTER_BASE', 'https://openrouter.ai/api/v1/chat/completions')
        model = os.getenv('LLM_MODEL', 'openai/gpt-4o')
    else:
        api_key = os.getenv('OPENAI_API_KEY')
        endpoint = os.getenv('OPENAI_BASE', 'https://api.openai.com/v1/chat/completions')
        model = os.getenv('LLM_MODEL', 'gpt-4o')
    if not api_key:
        raise OracleUnavailableError(f'missing api key for provider {provider}')
    payload = {
        "model": model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
        "response_format": {"type": "json_object"},
    }
    headers = {'Authorization': f'Bearer {api_key}', 'Content-Type': 'application/json'}
    try:
        async with httpx.AsyncClient(timeout=_timeout()) as client:
            resp = await client.post(endpoint, headers=headers, json=payload)
    except (httpx.TimeoutException, httpx.TransportError) as e:
        raise OracleUnavailableError(f'{type(e).__name__}: {e}') from e
    if resp.status_code == 429 or (resp.status_code >= 400 and 'insufficient_quota' in resp.text[:2000]):
        raise OracleQuotaError(f'http_{resp.status_code}: {resp.text[:160]}')
    if resp.status_code >= 500:
        raise OracleUnavailableError(f'http_{resp.status_code}: {resp.text[:160]}')
    if resp.status_code >= 400:
        raise OracleError(f'http_{resp.status_code}: {resp.text[:160]}')
    try:
        data = resp.json()
    except ValueError as e:
        raise OracleResponseError('provider returned a non-JSON envelope') from e
    if not isinstance(data, dict):
        raise OracleResponseError('provider returned an unexpected envelope')
    choices = data.get('choices')
    choice = choices[0] if isinstance(choices, list) and choices else {}
    message = choice.get('message') if isinstance(choice, dict) else None
    return _join_content(message.get('content') if isinstance(message, dict) else None)


def _gemini_extract_text(resp):  # pragma: no cover
    if not resp:
        return ""
    t = getattr(resp, 'text', None)
    if t:
        return t
    try:
        return resp.candidates[0].content.parts[0].text  # type: ignore
    except Exception:
        return ""


async def _gemini_completion(system: str, prompt: str, temperature: float, max_tokens: int) -> str:
    if not GEMINI_AVAILABLE or not os.getenv('GOOGLE_API_KEY'):
        raise OracleUnavailableError('gemini unavailable or missing GOOGLE_API_KEY')
    genai.configure(api_key=os.getenv('GOOGLE_API_KEY'))  # type: ignore
    model = genai.GenerativeModel(  # type: ignore
        os.getenv('GEMINI_MODEL', 'gemini-1.5-flash'),
        system_instruction=system,
        generation_config={
            "temperature": temperature,
            "max_output_tokens": max_tokens,
            "response_mime_type": "application/json",
        },
    )
    try:
        resp = await asyncio.wait_for(asyncio.to_thread(model.generate_content, prompt), timeout=_timeout())
    except asyncio.TimeoutError as e:
        raise OracleUnavailableError(f'gemini timeout >{_timeout()}s') from e
    except Exception as e:
        name = type(e).__name__
        if name in {'ResourceExhausted', 'TooManyRequests'}:
            raise OracleQuotaError(f'{name}: {e}') from e
        if name in {'ServiceUnavailable', 'InternalServerError', 'DeadlineExceeded'}:
            raise OracleUnavailableError(f'{name}: {e}') from e
        raise OracleError(f'{name}: {e}') from e
    return _gemini_extract_text(resp).strip()


async def _oracle_json(system: str, prompt: str, temperature: float = 0.3, max_tokens: int = 500) -> Dict[str, Any]:
    """Ask the configured provider and parse its answer as a JSON object."""
    if _provider() == 'gemini':
        text = await _gemini_completion(system, prompt, temperature, max_tokens)
    else:
        text = await _chat_completion(system, prompt, temperature, max_tokens)
    if not text:
        raise OracleResponseError('empty response')
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise OracleResponseError(f'response is not JSON: {text[:80]!r}') from e
    if not isinstance(data, dict):
        raise OracleResponseError('response is not a JSON object')
    return data


def build_categorize_prompt(content: str, categories: Sequence[Any]) -> str:
    lines = "\n".join(f"- id {c.id}: {c.name}: {c.description}" for c in categories)
    return (
        "You are an AI email categorizer. Analyze the following email content and categorize it "
        "into one of the available categories.\n\n"
        f"Available categories:\n{lines}\n\n"
        f"Email content:\n{_truncate(content)}\n\n"
        "Please respond with a JSON object in this exact format:\n"
        '{\n  "category_id": <number or null>,\n  "confidence": <number between 0 and 1>,\n'
        '  "summary": "<brief summary of the email content>"\n}\n\n'
        "If the email doesn't fit any category well, set category_id to null and confidence to 0."
    )


def fallback_categorization(content: str, categories: Sequence[Any]) -> ClassificationResult:
    """Deterministic keyword match used when the model is unavailable."""
    lowered = (content or '').lower()
    best: tuple[int, Any, str] | None = None
    for category in categories:
        keywords = KEYWORD_RULES.get((category.name or '').strip().lower())
        if not keywords:
            continue
        matches = [k for k in keywords if k in lowered]
        if matches and (best is None or len(matches) > best[0]):
            best = (len(matches), category, matches[0])
    if best is None:
        return ClassificationResult(category_id=None, confidence=0.0, summary=NO_MATCH_SUMMARY)
    hits, category, first = best
    return ClassificationResult(
        category_id=category.id,
        confidence=round(min(FALLBACK_CONFIDENCE_CAP, hits * FALLBACK_CONFIDENCE_STEP), 2),
        summary=f"Email appears to be {category.name.lower()} content ({first})",
    )


async def categorize_email(content: str, categories: Sequence[Any]) -> ClassificationResult:
    """Pick the best category for an email and summarize it.

    Unreachable, rate-limited or unparseable oracle answers fall back to keyword
    rules. A request the provider rejects outright raises OracleError.
    """
    prompt = build_categorize_prompt(content, categories)
    try:
        data = await _oracle_json(CATEGORIZE_SYSTEM_PROMPT, prompt, temperature=0.3, max_tokens=500)
        result = ClassificationResult.model_validate(data)
    except ValidationError as e:
        _record_error(e)
        log.warning("oracle_bad_shape_fallback", extra={"provider": _provider(), "error_type": "ValidationError"})
        return fallback_categorization(content, categories)
    except (OracleUnavailableError, OracleResponseError) as e:
        _record_error(e)
        event = "oracle_quota_fallback" if isinstance(e, OracleQuotaError) else "oracle_unavailable_fallback"
        log.warning(event, extra={"provider": _provider(), "error_type": type(e).__name__})
        return fallback_categorization(content, categories)
    except OracleError as e:
        _record_error(e)
        log.error("oracle_request_rejected", extra={"provider": _provider(), "error_type": type(e).__name__})
        raise
    known = {c.id for c in categories}
    if result.category_id is not None and result.category_id not in known:
        log.info("oracle_unknown_category", extra={"provider": _provider()})
        result = result.model_copy(update={"category_id": None, "confidence": 0.0})
    return result


async def extract_unsubscribe_with_oracle(content: str) -> UnsubscribeInfo:
    prompt = (
        "Extract unsubscribe information from this email. Look for:\n"
        "1. Unsubscribe URLs\n2. Unsubscribe email addresses\n3. Any other unsubscribe mechanisms\n\n"
        f"Email content:\n{_truncate(content)}\n\n"
        'Respond with JSON only:\n{\n  "url": "unsubscribe_url_if_found",\n'
        '  "email": "unsubscribe_email_if_found",\n  "found": true/false\n}'
    )
    data = await _oracle_json(UNSUBSCRIBE_SYSTEM_PROMPT, prompt, temperature=0.1, max_tokens=500)
    try:
        return UnsubscribeInfo.model_validate(data)
    except ValidationError as e:
        raise OracleResponseError('unsubscribe response has the wrong shape') from e


def oracle_diagnostics() -> Dict[str, Any]:  # pragma: no cover
    provider = _provider()
    base: Dict[str, Any] = {
        'provider': provider,
        'timeout_s': _timeout(),
        'last_error': LAST_ORACLE_ERROR,
        'fallback_confidence_cap': FALLBACK_CONFIDENCE_CAP,
    }
    if provider == 'gemini':
        base.update({
            'gemini_available': GEMINI_AVAILABLE,
            'has_key': bool(os.getenv('GOOGLE_API_KEY')),
            'model': os.getenv('GEMINI_MODEL', 'gemini-1.5-flash'),
        })
    elif provider in {'openrouter', 'or'}:
        base.update({'has_key': bool(os.getenv('OPENROUTER_API_KEY')), 'model': os.getenv('LLM_MODEL', 'openai/gpt-4o')})
    else:
        base.update({'has_key': bool(os.getenv('OPENAI_API_KEY')), 'model': os.getenv('LLM_MODEL', 'gpt-4o')})
    return base
