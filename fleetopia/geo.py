import math

EARTH_RADIUS_KM = 6371.0
# Trips shorter than this are treated as city driving
CITY_TRIP_KM = 50.0
SAME_COUNTRY_ESTIMATE_KM = 150.0
CROSS_BORDER_ESTIMATE_KM = 600.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def estimate_trip_km(from_country: str, to_country: str) -> float:
    """Rough trip length when the offer carries no coordinates."""
    if (from_country or "").strip().lower() == (to_country or "").strip().lower():
        return SAME_COUNTRY_ESTIMATE_KM
    return CROSS_BORDER_ESTIMATE_KM


def average_speed_kmph(distance_km: float, international: bool, city_kmph: float, highway_kmph: float) -> float:
    if distance_km < CITY_TRIP_KM:
        return city_kmph
    if international:
        return highway_kmph
    return city_kmph * 0.3 + highway_kmph * 0.7


def travel_minutes(distance_km: float, speed_kmph: float) -> int:
    if speed_kmph <= 0:
        return 0
    return int(round(distance_km / speed_kmph * 60))
