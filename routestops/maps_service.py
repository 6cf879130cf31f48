import asyncio
import concurrent.futures
import logging
import math
from typing import Dict, List, Optional
from urllib.parse import unquote

import requests

from .categories import PlaceCategory, geoapify_category
from .errors import (
    ConfigurationError,
    GeocodeProviderError,
    NoGeocodeResult,
    NoRouteFound,
    PlacesProviderError,
    ProviderError,
    RoutingProviderError,
)
from .geo import METERS_PER_MILE, haversine_distance_miles, offset_point
from .models import CandidatePlace, Location

logger = logging.getLogger(__name__)

# --- Module-level constants ---
GEOAPIFY_V1_URL = 'https://api.geoapify.com/v1'
GEOAPIFY_V2_URL = 'https://api.geoapify.com/v2'
REQUEST_TIMEOUT_S = 10
MAX_PROVIDER_RADIUS_M = 5000.0  # ceiling for a single places call
MAX_PROVIDER_LIMIT = 50
COUNTRY_FILTER = 'countrycode:us,ca'
GRID_WORKERS = 8  # concurrent sub-searches per large-radius lookup
PLACES_FIELDS = 'formatted,name,place_id,lat,lon,categories,details,datasource,website,address_line1,address_line2'


class GeoapifyService:
    """Service for the Geoapify geocoding, routing and places APIs"""

    def __init__(
        self,
        api_key: str,
        session: Optional[requests.Session] = None,
        max_workers: int = 10,
        grid_workers: int = GRID_WORKERS,
    ):
        if not api_key or api_key == "your_api_key_here":
            raise ConfigurationError("Valid Geoapify API key is required")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)
        # Separate pool: grid lookups already run on an executor thread
        self.grid_executor = concurrent.futures.ThreadPoolExecutor(max_workers=grid_workers)

    def cleanup(self):
        """Clean up resources"""
        if hasattr(self, 'executor'):
            self.executor.shutdown(wait=True)
        if hasattr(self, 'grid_executor'):
            self.grid_executor.shutdown(wait=True)

    def _get(self, endpoint: str, params: Dict, error_cls=ProviderError) -> Dict:
        """GET a Geoapify endpoint; places lives on v2, everything else on v1"""
        endpoint = endpoint.lstrip('/')
        base_url = GEOAPIFY_V2_URL if endpoint.startswith('places') else GEOAPIFY_V1_URL
        query = {key: str(value) for key, value in params.items()}
        query['apiKey'] = self.api_key
        try:
            response = self.session.get(f"{base_url}/{endpoint}", params=query, timeout=REQUEST_TIMEOUT_S)
        except requests.RequestException as e:
            raise error_cls(f"Request failed: {e}")
        if not response.ok:
            raise error_cls(
                f"API request failed: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            raise error_cls('Invalid JSON in provider response', status_code=response.status_code)

    def geocode_address(self, address: str) -> Location:
        """
        Geocode a free-text address, biased toward the US and Canada.
        Returns the top-ranked candidate only.
        """
        text = unquote(address or '').strip()
        if not text:
            raise NoGeocodeResult(text)

        data = self._get('geocode/search', {
            'text': text,
            'format': 'json',
            'filter': COUNTRY_FILTER,
            'bias': COUNTRY_FILTER,
            'limit': 1,
            'lang': 'en',
        }, error_cls=GeocodeProviderError)

        results = data.get('results') or []
        if not results:
            raise NoGeocodeResult(text)

        top = results[0]
        try:
            location = Location(lat=top['lat'], lng=top['lon'])
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodeProviderError(f"Malformed geocoding result: {e}")
        logger.info(f"Geocoded '{text}' -> {location.lat:.5f},{location.lng:.5f} ({top.get('formatted', '')})")
        return location

    def get_route(self, origin: Location, destination: Location) -> List[Location]:
        """
        Driving route between two points as an ordered (lat, lng) polyline.
        Geoapify returns GeoJSON (lng, lat) pairs, possibly split into one line per leg.
        """
        data = self._get('routing', {
            'waypoints': f"{origin.lat},{origin.lng}|{destination.lat},{destination.lng}",
            'mode': 'drive',
            'format': 'geojson',
            'details': 'route_details',
        }, error_cls=RoutingProviderError)

        features = data.get('features') or []
        geometry = (features[0] or {}).get('geometry') if features else None
        raw_coords = (geometry or {}).get('coordinates')
        if not isinstance(raw_coords, list) or not raw_coords:
            raise NoRouteFound('No valid route found')

        # MultiLineString: one line per leg, shared joint vertices
        if isinstance(raw_coords[0], list) and raw_coords[0] and isinstance(raw_coords[0][0], list):
            lines = raw_coords
        else:
            lines = [raw_coords]

        polyline: List[Location] = []
        for line in lines:
            for pair in line:
                try:
                    point = Location(lat=pair[1], lng=pair[0])
                except (IndexError, TypeError, ValueError):
                    raise NoRouteFound('Invalid route coordinates')
                if polyline and polyline[-1] == point:
                    continue
                polyline.append(point)

        if not polyline:
            raise NoRouteFound('Invalid route coordinates')
        logger.info(f"Route resolved with {len(polyline)} points")
        return polyline

    def _grid_points(self, center: Location, radius_m: float) -> List[Location]:
        """Sub-points whose capped search circles together cover the requested radius"""
        points = [center]
        if radius_m <= MAX_PROVIDER_RADIUS_M:
            return points

        # Square grid spacing r*sqrt(2) lets circles of radius r cover the plane
        step_m = MAX_PROVIDER_RADIUS_M * math.sqrt(2)
        grid_size = math.ceil(radius_m / step_m)
        for i in range(-grid_size, grid_size + 1):
            for j in range(-grid_size, grid_size + 1):
                if i == 0 and j == 0:
                    continue
                # Skip cells whose circle cannot reach the requested area
                if math.hypot(i * step_m, j * step_m) - MAX_PROVIDER_RADIUS_M > radius_m:
                    continue
                points.append(offset_point(center, north_m=i * step_m, east_m=j * step_m))
        return points

    def _search_point(self, point: Location, category: str, radius_m: float, limit: int) -> List[Dict]:
        data = self._get('places', {
            'categories': category,
            'filter': f"circle:{point.lng},{point.lat},{round(radius_m)}",
            'bias': f"proximity:{point.lng},{point.lat}",
            'limit': min(limit, MAX_PROVIDER_LIMIT),
            'lang': 'en',
            'conditions': 'named',
            'fields': PLACES_FIELDS,
        }, error_cls=PlacesProviderError)
        return data.get('features') or []

    def find_places_nearby(
        self,
        location: Location,
        category,
        radius_miles: float,
        limit: int,
        origin: Optional[Location] = None,
    ) -> List[CandidatePlace]:
        """
        Find candidate places around a point.
        Radii above the provider ceiling are split into a grid of concurrent sub-searches. A failing
        sub-search is logged and contributes no results.
        """
        place_category = PlaceCategory.parse(category)
        provider_category = geoapify_category(place_category)
        radius_m = radius_miles * METERS_PER_MILE
        base_radius = min(radius_m, MAX_PROVIDER_RADIUS_M)
        search_points = self._grid_points(location, radius_m)
        if len(search_points) > 1:
            logger.info(f"Radius {radius_m:.0f}m exceeds provider ceiling, searching {len(search_points)} grid cells")

        def search_cell(point: Location) -> List[Dict]:
            try:
                return self._search_point(point, provider_category, base_radius, limit)
            except PlacesProviderError as e:
                logger.warning(f"Places search failed at {point.lat:.5f},{point.lng:.5f}: {e}")
                return []

        if len(search_points) == 1:
            cell_results = [search_cell(location)]
        else:
            # Results come back in grid order so dedupe and truncation stay deterministic
            cell_results = list(self.grid_executor.map(search_cell, search_points))

        places: List[CandidatePlace] = []
        seen_ids = set()
        for features in cell_results:
            for feature in features:
                candidate = self._to_candidate(feature, place_category, origin)
                if candidate is None or candidate.external_id in seen_ids:
                    continue
                if haversine_distance_miles(location, candidate.location) > radius_miles:
                    continue
                seen_ids.add(candidate.external_id)
                places.append(candidate)
                if len(places) >= limit:
                    return places
        return places

    @staticmethod
    def _to_candidate(feature: Dict, category: PlaceCategory, origin: Optional[Location]) -> Optional[CandidatePlace]:
        props = (feature or {}).get('properties') or {}
        place_id = props.get('place_id')
        name = props.get('name')
        if not place_id or not name or props.get('lat') is None or props.get('lon') is None:
            return None
        try:
            location = Location(lat=props['lat'], lng=props['lon'])
        except (TypeError, ValueError):
            return None

        address_parts = [props.get('address_line1'), props.get('address_line2')]
        address = ', '.join(p for p in address_parts if p and p != name) or None
        return CandidatePlace(
            external_id=str(place_id),
            name=name,
            location=location,
            category=category,
            raw_address=address,
            distance_from_origin=haversine_distance_miles(origin, location) if origin else None,
            website=props.get('website'),
        )

    # Async wrapper methods for parallel execution
    async def geocode_address_async(self, address: str) -> Location:
        """Async wrapper for geocode_address"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.geocode_address, address)

    async def get_route_async(self, origin: Location, destination: Location) -> List[Location]:
        """Async wrapper for get_route"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.get_route, origin, destination)

    async def find_places_nearby_async(
        self,
        location: Location,
        category,
        radius_miles: float,
        limit: int,
        origin: Optional[Location] = None,
    ) -> List[CandidatePlace]:
        """Async wrapper for find_places_nearby"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            self.executor, self.find_places_nearby, location, category, radius_miles, limit, origin
        )
