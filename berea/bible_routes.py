import time
from typing import Optional

import requests
from fastapi import APIRouter, Query

from berea.bible_lookup import VerseNotFound, lookup_verse
from berea.errors import api_error
from berea.events import log_api_event
from berea.models import VerseResponse

router = APIRouter()


@router.get("/api/bible/verse", response_model=VerseResponse)
def get_verse(reference: Optional[str] = Query(None)):
    if not reference or not reference.strip():
        raise api_error(400, "reference_required", "reference query parameter is required")
    start = time.perf_counter()
    try:
        verse = lookup_verse(reference)
    except (VerseNotFound, requests.HTTPError):
        # upstream answered with a non-OK status, 5xx included once retries are spent
        log_api_event("verse_not_found", {"reference": reference})
        raise api_error(404, "verse_not_found", f"Could not find {reference}")
    except (requests.RequestException, ValueError) as exc:
        log_api_event("verse_lookup_error", {"reference": reference, "error": type(exc).__name__})
        raise api_error(502, "api_error", "Verse lookup failed")
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event("verse_get", {"reference": verse["reference"], "elapsed_ms": elapsed_ms})
    return verse
