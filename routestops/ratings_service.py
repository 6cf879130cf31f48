"""
Ratings enrichment through the TripAdvisor relay.

Every candidate place is looked up in two phases: a "search" by name near the place's
coordinates, then a "details" call for the matched location id. The relay and the
upstream API have produced several payload shapes over time; all of them go through
normalize_payload() so the rest of the code only sees RatingsRecord.
"""
import asyncio
import concurrent.futures
import logging
import math
import re
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from .cache import MISSING, TTLCache, fingerprint
from .categories import PlaceCategory, tripadvisor_type
from .errors import ConfigurationError, RateLimitedError, RatingsProviderError
from .models import CandidatePlace, EnrichedPlace, RatingsRecord

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY_S = 1.0
REQUEST_TIMEOUT_S = 10
RATINGS_CACHE_TTL_S = 3600.0
OPERATIONS = ('search', 'details')


def exponential_backoff(attempt: int, base_delay_s: float = RETRY_DELAY_S) -> float:
    return base_delay_s * (2 ** attempt)


def send_with_retry(
    send: Callable[[], requests.Response],
    max_retries: int = MAX_RETRIES,
    retry_delay_s: float = RETRY_DELAY_S,
    rate_limit_delay: Callable[[int], float] = exponential_backoff,
    sleep: Callable[[float], None] = time.sleep,
    description: str = 'request',
) -> requests.Response:
    """
    Issue a request with bounded retries.

    429 responses wait rate_limit_delay(attempt); 5xx responses and transport errors wait
    retry_delay_s. Any other 4xx is returned to the caller's error handling immediately.
    """
    last_error: Optional[RatingsProviderError] = None
    for attempt in range(max_retries + 1):
        retries_left = attempt < max_retries
        try:
            response = send()
        except requests.RequestException as e:
            last_error = RatingsProviderError(f"{description} failed: {e}")
            if retries_left:
                logger.info(f"{description} failed, retrying... (attempt {attempt + 1}/{max_retries})")
                sleep(retry_delay_s)
            continue

        if response.status_code == 429:
            last_error = RateLimitedError(f"{description} rate limited", status_code=429)
            if retries_left:
                delay = rate_limit_delay(attempt)
                logger.info(f"Rate limited, retrying in {delay * 1000:.0f}ms... (attempt {attempt + 1}/{max_retries})")
                sleep(delay)
            continue

        if response.status_code >= 500:
            last_error = RatingsProviderError(
                f"{description} failed: {_error_message(response)}", status_code=response.status_code
            )
            if retries_left:
                logger.info(f"{description} returned {response.status_code}, retrying... (attempt {attempt + 1}/{max_retries})")
                sleep(retry_delay_s)
            continue

        if not response.ok:
            raise RatingsProviderError(
                f"{description} rejected: {_error_message(response)}", status_code=response.status_code
            )
        return response

    raise last_error


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"API error: {response.status_code}"
    if isinstance(body, dict):
        return str(body.get('message') or body.get('error') or f"API error: {response.status_code}")
    return f"API error: {response.status_code}"


# --- Payload normalization ---

class PayloadShape(Enum):
    EMPTY = 'empty'                    # {data: null}, {}, [] ...
    RECORD_LIST = 'record_list'        # {data: [record, ...]} from location search
    NESTED_DETAILS = 'nested_details'  # {data: {..., details: {...}}} combined search+details
    FLAT_RECORD = 'flat_record'        # {data: {...}} or a bare record from location details


def _unwrap(payload: Any) -> Any:
    # Relays have wrapped the upstream {data: ...} envelope once or twice
    while isinstance(payload, dict) and 'data' in payload and 'location_id' not in payload:
        payload = payload['data']
    return payload


def classify_payload(payload: Any) -> Tuple[PayloadShape, Any]:
    body = _unwrap(payload)
    if isinstance(body, list):
        records = [r for r in body if isinstance(r, dict)]
        return (PayloadShape.RECORD_LIST, records) if records else (PayloadShape.EMPTY, None)
    if isinstance(body, dict) and body:
        if isinstance(body.get('details'), dict):
            return PayloadShape.NESTED_DETAILS, body
        return PayloadShape.FLAT_RECORD, body
    return PayloadShape.EMPTY, None


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(',', '')
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def to_int(value: Any) -> Optional[int]:
    number = to_float(value)
    if number is None or number < 0:
        return None
    return int(number)


def _rating(value: Any) -> Optional[float]:
    rating = to_float(value)
    if rating is None:
        return None
    if not 0.0 <= rating <= 5.0:
        logger.debug(f"Discarding out-of-range rating {value!r}")
        return None
    return rating


def _photo_count(record: Dict) -> Optional[int]:
    count = to_int(record.get('photo_count'))
    if count is not None:
        return count
    photos = record.get('photos')
    if isinstance(photos, list):
        return len(photos)
    return to_int(photos)


def _price_level(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return '$' * int(value) if value > 0 else None
    return str(value)


def _address(record: Dict) -> Optional[str]:
    address_obj = record.get('address_obj')
    if isinstance(address_obj, dict) and address_obj.get('address_string'):
        return address_obj['address_string']
    return record.get('address_string') or None


def _first(*values):
    for value in values:
        if value is not None and value != '':
            return value
    return None


def normalize_record(record: Dict) -> RatingsRecord:
    """Map one raw record onto RatingsRecord; a nested 'details' block wins over top-level fields"""
    details = record.get('details') if isinstance(record.get('details'), dict) else {}
    return RatingsRecord(
        location_id=_first(
            str(details['location_id']) if details.get('location_id') is not None else None,
            str(record['location_id']) if record.get('location_id') is not None else None,
        ),
        name=_first(details.get('name'), record.get('name')),
        rating=_first(_rating(details.get('rating')), _rating(record.get('rating'))),
        review_count=_first(to_int(details.get('num_reviews')), to_int(record.get('num_reviews'))),
        price_level=_first(_price_level(details.get('price_level')), _price_level(record.get('price_level'))),
        website=_first(details.get('website'), record.get('website')),
        phone=_first(details.get('phone'), record.get('phone')),
        address=_first(_address(details), _address(record)),
        photo_count=_first(_photo_count(details), _photo_count(record)) or 0,
        latitude=_first(to_float(details.get('latitude')), to_float(record.get('latitude'))),
        longitude=_first(to_float(details.get('longitude')), to_float(record.get('longitude'))),
    )


def normalize_payload(payload: Any) -> Optional[RatingsRecord]:
    shape, body = classify_payload(payload)
    if shape is PayloadShape.EMPTY:
        return None
    if shape is PayloadShape.RECORD_LIST:
        return normalize_record(body[0])
    return normalize_record(body)


def extract_records(payload: Any) -> List[Dict]:
    """Raw candidate records from a search payload, whatever its shape"""
    shape, body = classify_payload(payload)
    if shape is PayloadShape.EMPTY:
        return []
    if shape is PayloadShape.RECORD_LIST:
        return body
    return [body]


def merge_records(coarse: Optional[RatingsRecord], authoritative: Optional[RatingsRecord]) -> Optional[RatingsRecord]:
    """Field-by-field merge preferring the authoritative (details) record"""
    if coarse is None or authoritative is None:
        return authoritative or coarse
    return RatingsRecord(
        location_id=_first(authoritative.location_id, coarse.location_id),
        name=_first(authoritative.name, coarse.name),
        rating=_first(authoritative.rating, coarse.rating),
        review_count=_first(authoritative.review_count, coarse.review_count),
        price_level=_first(authoritative.price_level, coarse.price_level),
        website=_first(authoritative.website, coarse.website),
        phone=_first(authoritative.phone, coarse.phone),
        address=_first(authoritative.address, coarse.address),
        photo_count=authoritative.photo_count or coarse.photo_count,
        latitude=_first(authoritative.latitude, coarse.latitude),
        longitude=_first(authoritative.longitude, coarse.longitude),
    )


# --- Name matching ---

def normalize_name(name: Optional[str]) -> str:
    return re.sub(r'[^a-z0-9]', '', (name or '').lower())


def select_best_match(name: str, records: Sequence[Dict]) -> Optional[Dict]:
    """Exact normalized match, then substring containment either way, then the first record"""
    if not records:
        return None
    wanted = normalize_name(name)
    normalized = [(normalize_name(r.get('name')), r) for r in records]

    for candidate_name, record in normalized:
        if wanted and candidate_name == wanted:
            return record
    for candidate_name, record in normalized:
        if wanted and candidate_name and (wanted in candidate_name or candidate_name in wanted):
            return record
    return records[0]


class RatingsService:
    """
    Client for the ratings relay with retry, caching and response normalization.

    Talks to a remote relay over HTTP (proxy_url), or calls a relay mounted in the same
    process directly (relay).
    """

    def __init__(
        self,
        proxy_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        cache: Optional[TTLCache] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = MAX_RETRIES,
        retry_delay_s: float = RETRY_DELAY_S,
        relay=None,
    ):
        if not proxy_url and relay is None:
            raise ConfigurationError("Ratings relay URL or an in-process relay is required")
        self.proxy_url = proxy_url
        self.relay = relay
        self.session = session or requests.Session()
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=RATINGS_CACHE_TTL_S)
        self.sleep = sleep
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)

    def cleanup(self):
        self.executor.shutdown(wait=True)

    def request(self, op: str, payload: Dict) -> Any:
        """POST one operation to the relay and return its unwrapped 'data' body (cached)"""
        if op not in OPERATIONS:
            raise ValueError(f"Unknown ratings operation: {op}")

        key = fingerprint(op, payload)
        cached = self.cache.get(key)
        if cached is not MISSING:
            logger.debug(f"Ratings cache hit: {key}")
            return cached

        if self.relay is not None:
            # The relay retries upstream calls itself
            data = _unwrap(self.relay.handle(payload))
            self.cache.set(key, data)
            return data

        response = send_with_retry(
            lambda: self.session.post(self.proxy_url, json=payload, timeout=REQUEST_TIMEOUT_S),
            max_retries=self.max_retries,
            retry_delay_s=self.retry_delay_s,
            rate_limit_delay=lambda attempt: exponential_backoff(attempt, self.retry_delay_s),
            sleep=self.sleep,
            description=f"Ratings {op}",
        )
        try:
            body = response.json()
        except ValueError:
            raise RatingsProviderError(f"Invalid JSON response from ratings relay ({op})", status_code=response.status_code)

        data = _unwrap(body)
        self.cache.set(key, data)
        return data

    def search_location(self, name: str, lat: float, lng: float, category: PlaceCategory) -> List[Dict]:
        data = self.request('search', {
            'name': name,
            'latitude': lat,
            'longitude': lng,
            'type': tripadvisor_type(category),
        })
        return extract_records(data)

    def location_details(self, location_id: str) -> Optional[RatingsRecord]:
        data = self.request('details', {'locationId': location_id, 'fetchDetails': True})
        return normalize_payload(data)

    def lookup(self, candidate: CandidatePlace) -> Optional[RatingsRecord]:
        """Search by name near the candidate, pick the best match, then fetch its details"""
        records = self.search_location(
            candidate.name, candidate.location.lat, candidate.location.lng, candidate.category
        )
        match = select_best_match(candidate.name, records)
        if match is None:
            logger.info(f"No ratings match for {candidate.name}")
            return None

        coarse = normalize_record(match)
        if isinstance(match.get('details'), dict) or not coarse.location_id:
            return coarse
        return merge_records(coarse, self.location_details(coarse.location_id))

    def enrich(self, candidate: CandidatePlace) -> EnrichedPlace:
        """Attach ratings data to a candidate. Never raises; failures leave the candidate unenriched."""
        try:
            record = self.lookup(candidate)
        except Exception as e:
            logger.warning(f"Failed to enrich {candidate.name} ({candidate.external_id}): {e}")
            return EnrichedPlace.from_candidate(candidate)

        enriched = EnrichedPlace.from_candidate(candidate, record)
        if record is not None:
            logger.info(f"Enriched {candidate.name}: rating={enriched.rating} reviews={enriched.review_count}")
        return enriched

    async def enrich_async(self, candidate: CandidatePlace) -> EnrichedPlace:
        """Async wrapper for enrich"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.enrich, candidate)
