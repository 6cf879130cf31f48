"""
Server-side relay for the TripAdvisor Content API.
Keeps the TripAdvisor key off the client and caches upstream responses.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests
from flask import Blueprint, current_app, jsonify, request

from .cache import MISSING, TTLCache, fingerprint
from .errors import RatingsProviderError
from .ratings_service import MAX_RETRIES, REQUEST_TIMEOUT_S, RETRY_DELAY_S, send_with_retry

logger = logging.getLogger(__name__)

TRIPADVISOR_BASE_URL = 'https://api.content.tripadvisor.com/api/v1'
PROVIDER_CACHE_TTL_S = 3600.0
SEARCH_RADIUS_KM = 5

ratings_proxy_bp = Blueprint('ratings_proxy', __name__)


class BadRelayRequest(ValueError):
    pass


class TripAdvisorRelay:
    def __init__(
        self,
        api_key: Optional[str],
        session: Optional[requests.Session] = None,
        cache: Optional[TTLCache] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=PROVIDER_CACHE_TTL_S)
        self.sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key != 'your_api_key_here'

    def _get(self, path: str, params: Dict, description: str) -> Dict:
        url = f"{TRIPADVISOR_BASE_URL}/{path}"
        response = send_with_retry(
            lambda: self.session.get(
                url,
                params={**params, 'key': self.api_key},
                headers={'Accept': 'application/json'},
                timeout=REQUEST_TIMEOUT_S,
            ),
            max_retries=MAX_RETRIES,
            retry_delay_s=RETRY_DELAY_S,
            rate_limit_delay=lambda attempt: RETRY_DELAY_S,
            sleep=self.sleep,
            description=description,
        )
        logger.info(f"Response status {response.status_code} for {path}")
        try:
            return response.json()
        except ValueError:
            raise RatingsProviderError(f"{description} returned invalid JSON", status_code=502)

    def handle(self, body: Dict) -> Any:
        """Serve one search or details request, from cache when possible"""
        cache_key = fingerprint(body)
        cached = self.cache.get(cache_key)
        if cached is not MISSING:
            logger.info(f"Cache hit: {cache_key}")
            return cached

        if body.get('fetchDetails') and body.get('locationId'):
            location_id = str(body['locationId'])
            logger.info(f"Making TripAdvisor details request for ID: {location_id}")
            data = self._get(
                f"location/{location_id}/details",
                {'language': 'en', 'currency': 'USD'},
                description='TripAdvisor details',
            )
        else:
            latitude = body.get('latitude')
            longitude = body.get('longitude')
            if latitude in (None, '') or longitude in (None, ''):
                raise BadRelayRequest('Missing required parameters: latitude and longitude')
            name = body.get('name')
            if not name:
                logger.info('No place name provided')
                return None

            params = {
                'searchQuery': name,
                'latLong': f"{latitude},{longitude}",
                'radius': SEARCH_RADIUS_KM,
                'radiusUnit': 'km',
                'language': 'en',
            }
            if body.get('type'):
                params['category'] = body['type']
            logger.info(f"Making TripAdvisor search request for: {name}")
            upstream = self._get('location/search', params, description='TripAdvisor search')
            data = (upstream.get('data') or []) if isinstance(upstream, dict) else []

        self.cache.set(cache_key, data)
        return data


def init_ratings_proxy(app, api_key: Optional[str], **relay_kwargs) -> TripAdvisorRelay:
    relay = TripAdvisorRelay(api_key, **relay_kwargs)
    app.extensions['ratings_relay'] = relay
    app.register_blueprint(ratings_proxy_bp)
    return relay


@ratings_proxy_bp.route('/api/ratings-proxy', methods=['POST', 'OPTIONS'])
def ratings_proxy():
    """
    Relay a ratings request.
    Expected JSON: {"name", "latitude", "longitude", "type"} for a search,
    or {"locationId", "fetchDetails": true} for details.
    """
    if request.method == 'OPTIONS':
        response = current_app.response_class(status=204)
        response.headers['Access-Control-Allow-Methods'] = 'POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Accept, Origin'
        response.headers['Access-Control-Max-Age'] = '86400'
        return response

    relay = current_app.extensions.get('ratings_relay')
    if relay is None or not relay.configured:
        logger.error('TripAdvisor API key is missing in environment')
        return jsonify({
            'error': 'API configuration error',
            'message': 'TripAdvisor API key is not configured'
        }), 500

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'error': 'Bad Request', 'message': 'JSON object body is required'}), 400

    logger.info(
        "Processing request: type=%s name=%s locationId=%s",
        'details' if body.get('fetchDetails') else 'search',
        body.get('name'),
        body.get('locationId'),
    )
    try:
        data = relay.handle(body)
    except BadRelayRequest as e:
        return jsonify({'error': 'Bad Request', 'message': str(e)}), 400
    except RatingsProviderError as e:
        logger.error(f"Upstream ratings error: {e}")
        # 429 and other 4xx pass through; anything else is a gateway failure
        status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
        return jsonify({'error': 'Upstream Error', 'message': e.message}), status
    except Exception as e:
        logger.error(f"Function error: {e}", exc_info=True)
        return jsonify({'error': 'Internal Server Error', 'message': str(e)}), 500

    return jsonify({'data': data})
