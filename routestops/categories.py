import logging
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class PlaceCategory(str, Enum):
    """Caller-facing place categories. Values double as the public identifiers."""

    RESTAURANT = 'catering.restaurant'
    PIZZA = 'catering.restaurant.pizza'
    ITALIAN = 'catering.restaurant.italian'
    CHINESE = 'catering.restaurant.chinese'
    SUSHI = 'catering.restaurant.sushi'
    CAFE = 'catering.cafe'
    SHOPPING_MALL = 'commercial.shopping_mall'
    PARK = 'leisure.park'
    ATTRACTION = 'tourism.attraction'
    MUSEUM = 'tourism.museum'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'PlaceCategory':
        """Map a category identifier onto the enum, falling back to restaurants for unknown values"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown place category {value!r}, falling back to {DEFAULT_CATEGORY.value}")
            return DEFAULT_CATEGORY


DEFAULT_CATEGORY = PlaceCategory.RESTAURANT

# Geoapify Places taxonomy
GEOAPIFY_CATEGORIES: Dict[PlaceCategory, str] = {
    PlaceCategory.RESTAURANT: 'catering.restaurant',
    PlaceCategory.PIZZA: 'catering.restaurant.pizza',
    PlaceCategory.ITALIAN: 'catering.restaurant.italian',
    PlaceCategory.CHINESE: 'catering.restaurant.chinese',
    PlaceCategory.SUSHI: 'catering.restaurant.sushi',
    PlaceCategory.CAFE: 'catering.cafe',
    PlaceCategory.SHOPPING_MALL: 'commercial.shopping_mall',
    PlaceCategory.PARK: 'leisure.park',
    PlaceCategory.ATTRACTION: 'tourism.attraction',
    PlaceCategory.MUSEUM: 'tourism.museum',
}

# TripAdvisor location search "category" values
TRIPADVISOR_TYPES: Dict[PlaceCategory, str] = {
    PlaceCategory.RESTAURANT: 'restaurants',
    PlaceCategory.PIZZA: 'restaurants',
    PlaceCategory.ITALIAN: 'restaurants',
    PlaceCategory.CHINESE: 'restaurants',
    PlaceCategory.SUSHI: 'restaurants',
    PlaceCategory.CAFE: 'restaurants',
    PlaceCategory.SHOPPING_MALL: 'attractions',
    PlaceCategory.PARK: 'attractions',
    PlaceCategory.ATTRACTION: 'attractions',
    PlaceCategory.MUSEUM: 'attractions',
}

CATEGORY_LABELS: Dict[PlaceCategory, str] = {
    PlaceCategory.RESTAURANT: 'Restaurants',
    PlaceCategory.PIZZA: 'Pizza',
    PlaceCategory.ITALIAN: 'Italian',
    PlaceCategory.CHINESE: 'Chinese',
    PlaceCategory.SUSHI: 'Sushi',
    PlaceCategory.CAFE: 'Cafes',
    PlaceCategory.SHOPPING_MALL: 'Shopping',
    PlaceCategory.PARK: 'Parks',
    PlaceCategory.ATTRACTION: 'Attractions',
    PlaceCategory.MUSEUM: 'Museums',
}


def geoapify_category(category: PlaceCategory) -> str:
    return GEOAPIFY_CATEGORIES[category]


def tripadvisor_type(category: PlaceCategory) -> str:
    return TRIPADVISOR_TYPES[category]


def list_categories() -> List[Dict]:
    return [{'id': c.value, 'label': CATEGORY_LABELS[c]} for c in PlaceCategory]
