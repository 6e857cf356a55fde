# Great-circle distance (km) using the Haversine formula.

from math import radians, sin, cos, sqrt, atan2

from gems_api.models.dto import Coordinates

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0

def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in kilometres between two points given in decimal
    degrees, on a sphere of radius EARTH_RADIUS_KM.

    Symmetric in its arguments and exactly 0.0 for identical points.
    """
    phi1, lam1, phi2, lam2 = map(radians, (lat1, lon1, lat2, lon2))
    dphi = phi2 - phi1
    dlam = lam2 - lam1

    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlam / 2) ** 2
    # Rounding can push a a hair above 1 for antipodal points.
    a = min(1.0, a)
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c

def calculate_distance(origin: Coordinates, target: Coordinates) -> float:
    """Distance in kilometers between two coordinates."""
    return haversine(origin.lat, origin.lng, target.lat, target.lng)
