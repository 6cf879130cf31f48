import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional

from .categories import PlaceCategory
from .errors import InvalidSearchParams

MAX_RESULTS = 50
MAX_RADIUS_MILES = 25.0
MAX_DISTANCE_OFF_ROUTE_MILES = 10.0


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float

    def __post_init__(self):
        lat = float(self.lat)
        lng = float(self.lng)
        if math.isnan(lat) or math.isnan(lng):
            raise ValueError(f"Invalid coordinates: {self.lat}, {self.lng}")
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"Latitude out of range: {lat}")
        if not -180.0 <= lng <= 180.0:
            raise ValueError(f"Longitude out of range: {lng}")
        object.__setattr__(self, 'lat', lat)
        object.__setattr__(self, 'lng', lng)

    def to_dict(self) -> Dict:
        return {'lat': self.lat, 'lng': self.lng}

    def as_pair(self) -> List[float]:
        return [self.lat, self.lng]


class SearchMode(str, Enum):
    ROUTE = 'route'
    MEETUP = 'meetup'


@dataclass(frozen=True)
class CandidatePlace:
    external_id: str
    name: str
    location: Location
    category: PlaceCategory
    raw_address: Optional[str] = None
    distance_from_origin: Optional[float] = None
    website: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'external_id': self.external_id,
            'name': self.name,
            'location': self.location.to_dict(),
            'category': self.category.value,
            'address': self.raw_address,
            'distance_from_origin_miles': (
                round(self.distance_from_origin, 2) if self.distance_from_origin is not None else None
            ),
            'website': self.website,
        }


@dataclass(frozen=True)
class RatingsRecord:
    """Canonical ratings-provider record after normalization"""

    location_id: Optional[str] = None
    name: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_level: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    photo_count: int = 0
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class EnrichedPlace(CandidatePlace):
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_level: Optional[str] = None
    phone: Optional[str] = None
    photo_count: int = 0
    ratings_id: Optional[str] = None

    @classmethod
    def from_candidate(cls, candidate: CandidatePlace, record: Optional[RatingsRecord] = None) -> 'EnrichedPlace':
        """Merge a ratings record into a candidate. Base fields are never overwritten."""
        base = {
            'external_id': candidate.external_id,
            'name': candidate.name,
            'location': candidate.location,
            'category': candidate.category,
            'raw_address': candidate.raw_address,
            'distance_from_origin': candidate.distance_from_origin,
            'website': candidate.website,
        }
        if isinstance(candidate, EnrichedPlace):
            base.update(
                rating=candidate.rating,
                review_count=candidate.review_count,
                price_level=candidate.price_level,
                phone=candidate.phone,
                photo_count=candidate.photo_count,
                ratings_id=candidate.ratings_id,
            )
        place = cls(**base)
        if record is None:
            return place
        return replace(
            place,
            raw_address=place.raw_address or record.address,
            website=place.website or record.website,
            rating=record.rating,
            review_count=record.review_count,
            price_level=record.price_level,
            phone=record.phone,
            photo_count=record.photo_count or 0,
            ratings_id=record.location_id,
        )

    @property
    def is_enriched(self) -> bool:
        return self.ratings_id is not None

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data.update({
            'rating': self.rating,
            'review_count': self.review_count,
            'price_level': self.price_level,
            'phone': self.phone,
            'photo_count': self.photo_count,
            'ratings_id': self.ratings_id,
        })
        return data


@dataclass
class SearchParams:
    origin: str
    destination: str
    place_type: PlaceCategory = PlaceCategory.RESTAURANT
    max_results: int = 10
    radius_miles: float = 5.0
    distance_off_route_miles: float = 2.0
    skip_from_start: float = 0.0

    def __post_init__(self):
        self.origin = (self.origin or '').strip()
        self.destination = (self.destination or '').strip()
        if not self.origin or not self.destination:
            raise InvalidSearchParams('Please enter both origin and destination')
        self.place_type = PlaceCategory.parse(self.place_type)
        try:
            self.max_results = int(self.max_results)
            self.radius_miles = float(self.radius_miles)
            self.distance_off_route_miles = float(self.distance_off_route_miles)
            self.skip_from_start = float(self.skip_from_start)
        except (TypeError, ValueError) as e:
            raise InvalidSearchParams(f"Invalid numeric search parameter: {e}")
        if not 1 <= self.max_results <= MAX_RESULTS:
            raise InvalidSearchParams(f"maxLocations must be between 1 and {MAX_RESULTS}")
        if not 0 < self.radius_miles <= MAX_RADIUS_MILES:
            raise InvalidSearchParams(f"radius must be greater than 0 and at most {MAX_RADIUS_MILES:g} miles")
        if not 0 < self.distance_off_route_miles <= MAX_DISTANCE_OFF_ROUTE_MILES:
            raise InvalidSearchParams(
                f"distanceOffRoute must be greater than 0 and at most {MAX_DISTANCE_OFF_ROUTE_MILES:g} miles"
            )
        if not 0 <= self.skip_from_start <= 100:
            raise InvalidSearchParams('skipFromStart must be between 0 and 100')


@dataclass
class SearchResult:
    places: List[EnrichedPlace]
    center: Location
    origin_location: Location
    destination_location: Location
    mode: SearchMode
    route: Optional[List[Location]] = None
    search_points: List[Location] = field(default_factory=list)
    route_distance_miles: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            'mode': self.mode.value,
            'places': [p.to_dict() for p in self.places],
            'center': self.center.to_dict(),
            'route': {'coordinates': [p.as_pair() for p in self.route]} if self.route else None,
            'route_distance_miles': (
                round(self.route_distance_miles, 1) if self.route_distance_miles is not None else None
            ),
            'origin_location': self.origin_location.as_pair(),
            'destination_location': self.destination_location.as_pair(),
            'search_points': [p.to_dict() for p in self.search_points],
        }
