import os
import re
import time
from urllib.parse import quote

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from berea.cache import cache_get, cache_set
from berea.events import log_api_event

BIBLE_API_URL = os.getenv("BIBLE_API_URL", "https://bible-api.com").rstrip("/")
BIBLE_API_TIMEOUT_SEC = float(os.getenv("BIBLE_API_TIMEOUT_SEC", "10"))
VERSE_CACHE_TTL_SEC = int(os.getenv("VERSE_CACHE_TTL_SEC", "86400"))
DEFAULT_TRANSLATION = "KJV"

HEADERS = {
    "User-Agent": "BereaStudy/0.1",
    "Accept": "application/json",
}


class VerseNotFound(Exception):
    pass


def build_verse_url(reference: str) -> str:
    """bible-api.com takes the reference in the path with spaces as '+'."""
    compact = re.sub(r"\s+", "+", reference.strip())
    return f"{BIBLE_API_URL}/{quote(compact, safe='+:')}"


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=8),
    retry=retry_if_exception_type(requests.RequestException),
    reraise=True,
)
def fetch_verse_json(url: str) -> dict:
    r = requests.get(url, headers=HEADERS, timeout=BIBLE_API_TIMEOUT_SEC)
    if 400 <= r.status_code < 500:
        raise VerseNotFound(url)
    r.raise_for_status()
    return r.json()


def lookup_verse(reference: str) -> dict:
    cache_id = reference.strip().lower()
    cached = cache_get("verse", cache_id)
    if cached:
        return cached
    url = build_verse_url(reference)
    start = time.perf_counter()
    data = fetch_verse_json(url)
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    text = (data.get("text") or "").strip()
    if not text:
        raise VerseNotFound(url)
    result = {
        "reference": data.get("reference") or reference,
        "text": text,
        "translation": data.get("translation_name") or DEFAULT_TRANSLATION,
    }
    cache_set("verse", cache_id, result, VERSE_CACHE_TTL_SEC)
    log_api_event("verse_lookup", {"reference": result["reference"], "elapsed_ms": elapsed_ms})
    return result
