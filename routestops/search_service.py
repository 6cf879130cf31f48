import asyncio
import logging
import math
from typing import Iterable, List, Optional

from .geo import haversine_distance_miles, midpoint, polyline_length_miles, sample_along_polyline
from .maps_service import GeoapifyService
from .models import CandidatePlace, EnrichedPlace, Location, SearchMode, SearchParams, SearchResult
from .ratings_service import RatingsService

logger = logging.getLogger(__name__)

# --- Module-level constants ---
ENRICHMENT_DELAY_S = 0.5  # pause between sequential ratings lookups


def dedupe_places(places: Iterable[CandidatePlace]) -> List[CandidatePlace]:
    """Keep the first occurrence of each external id, preserving order"""
    seen = set()
    unique = []
    for place in places:
        if not place.external_id or place.external_id in seen:
            continue
        seen.add(place.external_id)
        unique.append(place)
    return unique


def rank_places(places: Iterable[EnrichedPlace], reference: Location) -> List[EnrichedPlace]:
    """Rating descending (unrated last as 0), then distance from the reference point, then name"""
    return sorted(
        places,
        key=lambda p: (
            -(p.rating or 0.0),
            haversine_distance_miles(reference, p.location),
            p.name.lower(),
        ),
    )


class PlaceSearchFinder:
    """Finds places along a driving route or around the midpoint of two addresses"""

    def __init__(
        self,
        maps_service: GeoapifyService,
        ratings_service: Optional[RatingsService] = None,
        enrichment_delay_s: float = ENRICHMENT_DELAY_S,
    ):
        self.maps_service = maps_service
        self.ratings_service = ratings_service
        self.enrichment_delay_s = enrichment_delay_s

    def find_places(self, params: SearchParams, mode: SearchMode) -> SearchResult:
        """
        Run a search to completion.
        Raises on fatal errors (geocoding, routing); an empty result is a valid answer.
        """
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(self.find_places_async(params, mode))
        finally:
            loop.close()

    async def find_places_async(self, params: SearchParams, mode: SearchMode) -> SearchResult:
        mode = SearchMode(mode)
        logger.info(f"Starting {mode.value} search: '{params.origin}' -> '{params.destination}' ({params.place_type.value})")

        # Geocode both addresses in parallel; either failure aborts the search
        origin_location, destination_location = await asyncio.gather(
            self.maps_service.geocode_address_async(params.origin),
            self.maps_service.geocode_address_async(params.destination),
        )

        if mode is SearchMode.MEETUP:
            result = await self._search_meetup(params, origin_location, destination_location)
        else:
            result = await self._search_route(params, origin_location, destination_location)

        logger.info(f"{mode.value} search finished with {len(result.places)} places")
        return result

    async def _search_meetup(self, params: SearchParams, origin: Location, destination: Location) -> SearchResult:
        center = midpoint(origin, destination)
        try:
            candidates = await self.maps_service.find_places_nearby_async(
                center, params.place_type, params.radius_miles, params.max_results, origin
            )
        except Exception as e:
            logger.error(f"Places search failed at midpoint: {e}")
            candidates = []

        enriched = await self._enrich_all(dedupe_places(candidates))
        places = rank_places(enriched, center)[:params.max_results]
        return SearchResult(
            places=places,
            center=center,
            origin_location=origin,
            destination_location=destination,
            mode=SearchMode.MEETUP,
            search_points=[center],
        )

    async def _search_route(self, params: SearchParams, origin: Location, destination: Location) -> SearchResult:
        route = await self.maps_service.get_route_async(origin, destination)
        search_points = sample_along_polyline(route, math.ceil(params.max_results / 2))

        if params.skip_from_start:
            skip = math.floor(len(search_points) * params.skip_from_start / 100)
            search_points = search_points[skip:]
            logger.info(f"Skipping first {skip} sample points ({params.skip_from_start:g}% of route)")

        candidates: List[CandidatePlace] = []
        if search_points:
            per_point_limit = math.ceil(params.max_results / len(search_points))
            results = await asyncio.gather(*[
                self._search_point(point, params, per_point_limit, origin) for point in search_points
            ])
            for point_places in results:
                candidates.extend(point_places)

        unique = dedupe_places(candidates)
        logger.info(f"Found {len(candidates)} places along route, {len(unique)} unique")
        enriched = await self._enrich_all(unique)
        places = rank_places(enriched, origin)[:params.max_results]

        if search_points:
            center = search_points[len(search_points) // 2]
        else:
            center = route[len(route) // 2]

        return SearchResult(
            places=places,
            center=center,
            origin_location=origin,
            destination_location=destination,
            mode=SearchMode.ROUTE,
            route=route,
            search_points=search_points,
            route_distance_miles=polyline_length_miles(route),
        )

    async def _search_point(
        self, point: Location, params: SearchParams, limit: int, origin: Location
    ) -> List[CandidatePlace]:
        try:
            return await self.maps_service.find_places_nearby_async(
                point, params.place_type, params.distance_off_route_miles, limit, origin
            )
        except Exception as e:
            logger.error(f"Places search failed for point {point.lat:.5f},{point.lng:.5f}: {e}")
            return []

    async def _enrich_all(self, candidates: List[CandidatePlace]) -> List[EnrichedPlace]:
        """Enrich one candidate at a time to stay under the ratings provider's rate limit"""
        if self.ratings_service is None:
            return [EnrichedPlace.from_candidate(c) for c in candidates]

        enriched: List[EnrichedPlace] = []
        for i, candidate in enumerate(candidates):
            if i and self.enrichment_delay_s > 0:
                await asyncio.sleep(self.enrichment_delay_s)
            enriched.append(await self.ratings_service.enrich_async(candidate))
        return enriched
