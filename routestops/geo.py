"""
Pure geodesic helpers: midpoints, distances and route sampling.
"""
import math
from typing import List, Sequence

from geopy.distance import distance as geopy_distance, geodesic

from .errors import InsufficientRouteData
from .models import Location

EARTH_RADIUS_KM = 6371.0
KM_TO_MILES = 0.621371
METERS_PER_MILE = 1609.34


def midpoint(a: Location, b: Location) -> Location:
    """Point bisecting the great-circle arc between a and b"""
    lat1, lon1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lon2 = math.radians(b.lat), math.radians(b.lng)

    bx = math.cos(lat2) * math.cos(lon2 - lon1)
    by = math.cos(lat2) * math.sin(lon2 - lon1)

    mid_lat = math.atan2(
        math.sin(lat1) + math.sin(lat2),
        math.sqrt((math.cos(lat1) + bx) ** 2 + by ** 2)
    )
    mid_lon = lon1 + math.atan2(by, math.cos(lat1) + bx)

    lng = math.degrees(mid_lon)
    # Crossing the antimeridian can push the sum past +/-180
    lng = (lng + 540.0) % 360.0 - 180.0
    return Location(lat=math.degrees(mid_lat), lng=lng)


def haversine_distance_miles(a: Location, b: Location) -> float:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c * KM_TO_MILES


def sample_along_polyline(coords: Sequence[Location], desired_count: int) -> List[Location]:
    """
    Pick evenly index-spaced points along a polyline.
    The first and last coordinate are always included; at most desired_count + 2 points are returned.
    """
    if not coords or len(coords) < 2:
        raise InsufficientRouteData('Not enough coordinates to generate points')

    desired_count = max(1, desired_count)
    step = max(1, len(coords) // desired_count)
    points: List[Location] = [coords[0]]
    for i in range(step, len(coords) - step, step):
        if len(points) > desired_count:
            break
        points.append(coords[i])

    # The loop never reaches the final index
    points.append(coords[-1])
    return points


def polyline_length_miles(coords: Sequence[Location]) -> float:
    """Geodesic length of a polyline in miles"""
    total = 0.0
    for i in range(len(coords) - 1):
        a = (coords[i].lat, coords[i].lng)
        b = (coords[i + 1].lat, coords[i + 1].lng)
        total += geodesic(a, b).miles
    return total


def offset_point(point: Location, north_m: float, east_m: float) -> Location:
    """Move a point north/east by the given number of meters along geodesics"""
    origin = (point.lat, point.lng)
    if north_m:
        moved = geopy_distance(meters=abs(north_m)).destination(origin, bearing=0 if north_m > 0 else 180)
        origin = (moved.latitude, moved.longitude)
    if east_m:
        moved = geopy_distance(meters=abs(east_m)).destination(origin, bearing=90 if east_m > 0 else 270)
        origin = (moved.latitude, moved.longitude)
    return Location(lat=origin[0], lng=origin[1])
