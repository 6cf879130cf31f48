from flask import Flask, request, jsonify, g
from flask_cors import CORS
from dotenv import load_dotenv
import os
import logging
import json
from time import perf_counter

from .cache import TTLCache
from .categories import list_categories
from .errors import (
    ConfigurationError,
    InvalidSearchParams,
    NoGeocodeResult,
    NoRouteFound,
    InsufficientRouteData,
    ProviderError,
)
from .maps_service import GeoapifyService
from .models import SearchMode, SearchParams
from .ratings_proxy import init_ratings_proxy
from .ratings_service import RATINGS_CACHE_TTL_S, RatingsService
from .search_service import ENRICHMENT_DELAY_S, PlaceSearchFinder

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(os.getenv('LOG_FILE', 'app.log')),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)  # Enable CORS for all routes


def _env_flag(name: str, default: str = '1') -> bool:
    return os.getenv(name, default) not in ('0', 'false', 'False', 'no', 'off')


def _configured(key):
    return bool(key) and key != 'your_api_key_here'


# Per-request timing: record start time and log duration on completion
@app.before_request
def _start_timer():
    g._start_time = perf_counter()


@app.after_request
def _log_request_duration(response):
    start = getattr(g, '_start_time', None)
    if start is not None:
        duration_ms = (perf_counter() - start) * 1000.0
        # Include response time header for easy debugging/measurement
        response.headers['X-Process-Time-ms'] = f"{duration_ms:.1f}"
        logger.info(
            "request completed: method=%s path=%s status=%s duration_ms=%.1f remote_addr=%s",
            request.method,
            request.full_path if request.query_string else request.path,
            response.status_code,
            duration_ms,
            request.remote_addr,
        )
    return response


@app.teardown_request
def _teardown_request_log(error=None):
    # If an unhandled exception occurred, ensure we still log duration
    if error is not None:
        start = getattr(g, '_start_time', None)
        duration_ms = (perf_counter() - start) * 1000.0 if start is not None else None
        logger.error(
            "request error: method=%s path=%s duration_ms=%s error=%s",
            request.method,
            request.path,
            f"{duration_ms:.1f}" if duration_ms is not None else 'unknown',
            repr(error),
        )


# Initialize services
api_key = os.getenv('GEOAPIFY_API_KEY')
tripadvisor_key = os.getenv('TRIPADVISOR_API_KEY')
logger.info(f"Geoapify API key found: {'Yes' if _configured(api_key) else 'No'}")
logger.info(f"TripAdvisor API key found: {'Yes' if _configured(tripadvisor_key) else 'No'}")

ratings_relay = init_ratings_proxy(app, tripadvisor_key)


def build_finder(geoapify_key, ratings_url=None, ratings_enabled=True, relay=None):
    """
    Wire the search pipeline from configuration. Returns None when Geoapify is not configured.
    Ratings go through ratings_url when set, otherwise through the relay mounted in this app.
    """
    if not _configured(geoapify_key):
        logger.warning("GEOAPIFY_API_KEY not found or not configured in environment variables")
        return None
    try:
        maps = GeoapifyService(geoapify_key)
    except ConfigurationError as e:
        logger.error(f"Error initializing Geoapify service: {e}")
        return None

    ratings = None
    ttl = float(os.getenv('RATINGS_CACHE_TTL_SECONDS', RATINGS_CACHE_TTL_S))
    if not ratings_enabled:
        logger.info("Ratings enrichment disabled")
    elif ratings_url:
        ratings = RatingsService(ratings_url, cache=TTLCache(ttl_seconds=ttl))
        logger.info(f"Ratings enrichment enabled via {ratings_url}")
    elif relay is not None and relay.configured:
        ratings = RatingsService(relay=relay, cache=TTLCache(ttl_seconds=ttl))
        logger.info("Ratings enrichment enabled via the in-process TripAdvisor relay")
    else:
        logger.warning("Ratings enrichment disabled: set TRIPADVISOR_API_KEY or RATINGS_PROXY_URL")

    delay_s = float(os.getenv('ENRICHMENT_DELAY_MS', ENRICHMENT_DELAY_S * 1000)) / 1000.0
    return PlaceSearchFinder(maps, ratings, enrichment_delay_s=delay_s)


finder = build_finder(
    api_key,
    ratings_url=os.getenv('RATINGS_PROXY_URL'),
    ratings_enabled=_env_flag('RATINGS_ENRICHMENT_ENABLED'),
    relay=ratings_relay,
)


def _search_params_from_json(data):
    return SearchParams(
        origin=data.get('origin'),
        destination=data.get('destination'),
        place_type=data.get('placeType', 'catering.restaurant'),
        max_results=data.get('maxLocations', 10),
        radius_miles=data.get('radius', 5),
        distance_off_route_miles=data.get('distanceOffRoute', 2),
        skip_from_start=data.get('skipFromStart', 0),
    )


@app.route('/', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({
        'message': 'RouteStops API is running!',
        'endpoints': {
            'search': '/api/search',
            'geocode': '/api/geocode',
            'categories': '/api/categories',
            'ratings_proxy': '/api/ratings-proxy',
            'config': '/api/config',
            'health': '/'
        },
        'status': 'healthy'
    })


@app.route('/api/categories', methods=['GET'])
def get_categories():
    return jsonify({'success': True, 'data': list_categories()})


@app.route('/api/geocode', methods=['POST'])
def geocode_address():
    """
    Geocode a single address
    Expected JSON: {"address": "123 Main St, City, State"}
    """
    if not finder:
        logger.error("Geoapify API key not configured - cannot geocode")
        return jsonify({'success': False, 'error': 'Geoapify API key not configured'}), 500

    data = request.get_json(silent=True)
    if not data or not data.get('address'):
        logger.error("Address not provided in request")
        return jsonify({'success': False, 'error': 'Address is required'}), 400

    address = data['address']
    logger.info(f"Attempting to geocode address: '{address}'")
    try:
        location = finder.maps_service.geocode_address(address)
    except NoGeocodeResult as e:
        logger.warning(f"Failed to geocode address: '{address}'")
        return jsonify({'success': False, 'error': str(e)}), 404
    except ProviderError as e:
        logger.error(f"Geocoding provider error: {e}")
        return jsonify({'success': False, 'error': f"Geocoding failed: {e}"}), 502

    return jsonify({'success': True, 'data': location.to_dict()})


@app.route('/api/search', methods=['POST'])
def search_places():
    """
    Find places along a route or around the midpoint of two addresses
    Expected JSON: {
        "origin": "123 Main St, City, State",
        "destination": "456 Oak Ave, City, State",
        "mode": "route" | "meetup",
        "placeType": "catering.restaurant",
        "maxLocations": 10,
        "radius": 5,               // miles, meetup mode
        "distanceOffRoute": 2,     // miles, route mode
        "skipFromStart": 0         // percent of route, route mode
    }
    """
    logger.info("=== SEARCH REQUEST ===")

    if not finder:
        logger.error("Geoapify API key not configured - cannot process request")
        return jsonify({'success': False, 'error': 'Geoapify API key not configured'}), 500

    data = request.get_json(silent=True)
    logger.info(f"Request data received: {json.dumps(data) if data else 'None'}")
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'JSON data is required'}), 400

    try:
        mode = SearchMode(str(data.get('mode', 'route')).lower())
    except ValueError:
        return jsonify({'success': False, 'error': "mode must be 'route' or 'meetup'"}), 400

    try:
        params = _search_params_from_json(data)
    except InvalidSearchParams as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    _search_start = perf_counter()
    try:
        result = finder.find_places(params, mode)
    except (NoGeocodeResult, NoRouteFound, InsufficientRouteData) as e:
        logger.warning(f"Search aborted: {e}")
        return jsonify({'success': False, 'error': str(e)}), 422
    except ProviderError as e:
        logger.error(f"Search failed on provider error: {e}")
        return jsonify({'success': False, 'error': f"Search failed: {e}"}), 502
    _compute_ms = (perf_counter() - _search_start) * 1000.0
    logger.info("Time to search = %.1f ms (mode=%s, places=%d)", _compute_ms, mode.value, len(result.places))

    payload = {'success': True, 'data': result.to_dict()}
    if not result.places:
        payload['message'] = 'No places found. Try a larger radius or a different category.'
    response = jsonify(payload)
    response.headers['X-Compute-Time-ms'] = f"{_compute_ms:.1f}"
    return response


@app.route('/api/config', methods=['GET'])
def get_config():
    """
    Public configuration for the frontend (never exposes secrets)
    """
    return jsonify({
        'success': True,
        'data': {
            'searchEnabled': finder is not None,
            'ratingsEnabled': bool(finder and finder.ratings_service),
            'categories': list_categories(),
            'apiBaseUrl': request.host_url.rstrip('/')
        }
    })


@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Endpoint not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(500)
def internal_error(error):
    return jsonify({'error': 'Internal server error'}), 500


if __name__ == '__main__':
    if not _configured(api_key):
        print("\n" + "="*50)
        print("SETUP REQUIRED:")
        print("="*50)
        print("1. Get a Geoapify API key from: https://myprojects.geoapify.com/")
        print("2. Get a TripAdvisor Content API key for ratings enrichment")
        print("3. Set GEOAPIFY_API_KEY and TRIPADVISOR_API_KEY in the .env file")
        print("4. Restart the app")
        print("="*50)
        print("API will start but searches are disabled without a Geoapify key\n")
    else:
        print("Starting RouteStops API...")

    app.run(host='0.0.0.0', port=5001, debug=True)
