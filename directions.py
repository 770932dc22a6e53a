"""
Direct point-to-point routing across campus.

Road routing is left to the external maps link; this module only computes the
great-circle distance, an initial compass heading and a travel-time estimate
from fixed walking / wheelchair speeds with a flat crowd penalty.
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional

from models import round_half_up

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371e3
WALKING_SPEED = 1.4  # m/s, about 5 km/h
WHEELCHAIR_SPEED = 0.9  # m/s, about 3.2 km/h
CROWD_PENALTY = 1.3

COMPASS_POINTS = [
    "North", "Northeast", "East", "Southeast",
    "South", "Southwest", "West", "Northwest",
]

ACCESSIBILITY_FEATURES = {
    "wheelchairFriendly": True,
    "ramps": True,
    "elevators": True,
    "tactileGuides": False,
    "audioBeacons": False,
}

CAMPUS_LOCATIONS = [
    {"name": "Main Gate", "lat": -0.4145, "lon": 34.5610, "building": "Entrance", "type": "gate"},
    {"name": "Library", "lat": -0.4133, "lon": 34.5620, "building": "Central Library", "type": "building"},
    {"name": "Student Center", "lat": -0.4120, "lon": 34.5630, "building": "Student Hub", "type": "building"},
    {"name": "Dining Hall", "lat": -0.4125, "lon": 34.5615, "building": "Food Court", "type": "facility"},
    {"name": "Medical Clinic", "lat": -0.4135, "lon": 34.5635, "building": "Health Center", "type": "facility"},
    {"name": "Sports Complex", "lat": -0.4150, "lon": 34.5640, "building": "Athletics", "type": "facility"},
    {"name": "Science Building", "lat": -0.4110, "lon": 34.5625, "building": "Science Labs", "type": "building"},
    {"name": "Engineering Hall", "lat": -0.4108, "lon": 34.5618, "building": "Engineering", "type": "building"},
    {"name": "Arts Center", "lat": -0.4140, "lon": 34.5645, "building": "Arts & Culture", "type": "building"},
    {"name": "Parking Lot A", "lat": -0.4155, "lon": 34.5650, "building": "Parking", "type": "parking"},
]


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in metres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing in degrees, normalised to [0, 360)."""
    d_lambda = math.radians(lon2 - lon1)
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def compass_direction(bearing: float) -> str:
    # 45 degree sectors centred on each point, so 337.5..22.5 is North
    index = int(math.floor((bearing % 360 + 22.5) / 45)) % 8
    return COMPASS_POINTS[index]


def estimate_travel_time(distance: float, wheelchair: bool = False, crowded: bool = False) -> Dict[str, Any]:
    base_speed = WHEELCHAIR_SPEED if wheelchair else WALKING_SPEED
    penalty = CROWD_PENALTY if crowded else 1.0
    seconds = (distance / base_speed) * penalty
    return {
        "distance": round_half_up(distance),
        "timeSeconds": round_half_up(seconds),
        "timeMinutes": math.ceil(seconds / 60),
        "isCrowded": crowded,
        "baseSpeed": base_speed,
        "crowdPenalty": penalty,
    }


def maps_link(lat: float, lon: float) -> str:
    return f"https://www.google.com/maps?q={lat},{lon}"


def directions_link(start_lat, start_lon, end_lat, end_lon) -> str:
    return (
        "https://www.google.com/maps/dir/?api=1"
        f"&origin={start_lat},{start_lon}"
        f"&destination={end_lat},{end_lon}"
        "&travelmode=walking"
    )


def generate_instructions(start_lat, start_lon, end_lat, end_lon) -> List[Dict[str, Any]]:
    direction = compass_direction(calculate_bearing(start_lat, start_lon, end_lat, end_lon))
    return [
        {
            "instruction": f"Start heading {direction}",
            "distance": None,
            "landmark": None,
        },
        {
            "instruction": "Continue for the destination",
            "distance": calculate_distance(start_lat, start_lon, end_lat, end_lon),
            "landmark": "Destination ahead",
        },
    ]


class Directions:
    def __init__(self, crowd_check: Optional[Callable[[float, float], bool]] = None):
        self.crowd_check = crowd_check
        self.campus_locations = [dict(loc) for loc in CAMPUS_LOCATIONS]

    def search_locations(self, query: Optional[str]) -> List[Dict[str, Any]]:
        if not query or len(query) < 2:
            return []
        needle = query.lower()
        return [
            loc for loc in self.campus_locations
            if needle in loc["name"].lower() or needle in loc["building"].lower()
        ]

    def get_location_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        for loc in self.campus_locations:
            if loc["name"].lower() == name.lower():
                return loc
        return None

    def _is_crowded(self, lat: float, lon: float) -> bool:
        if self.crowd_check is None:
            return False
        try:
            return bool(self.crowd_check(lat, lon))
        except Exception as e:
            logger.warning("Crowd check failed, assuming clear route: %s", e)
            return False

    def get_route(
        self,
        start_lat: float,
        start_lon: float,
        end_lat: float,
        end_lon: float,
        wheelchair: bool = False,
        avoid_crowded: bool = False,
    ) -> Dict[str, Any]:
        distance = calculate_distance(start_lat, start_lon, end_lat, end_lon)
        crowded = False
        if avoid_crowded:
            crowded = self._is_crowded((start_lat + end_lat) / 2, (start_lon + end_lon) / 2)
        travel = estimate_travel_time(distance, wheelchair=wheelchair, crowded=crowded)

        return {
            "start": {"lat": start_lat, "lng": start_lon},
            "end": {"lat": end_lat, "lng": end_lon},
            "distance": travel["distance"],
            "timeMinutes": travel["timeMinutes"],
            "timeSeconds": travel["timeSeconds"],
            "isCrowded": travel["isCrowded"],
            "wheelchair": wheelchair,
            "waypoints": [
                {"lat": start_lat, "lng": start_lon, "description": "Start"},
                {"lat": end_lat, "lng": end_lon, "description": "Destination"},
            ],
            "instructions": generate_instructions(start_lat, start_lon, end_lat, end_lon),
            "mapsLink": directions_link(start_lat, start_lon, end_lat, end_lon),
        }

    def get_accessible_route(self, start_lat, start_lon, end_lat, end_lon) -> Dict[str, Any]:
        route = self.get_route(start_lat, start_lon, end_lat, end_lon, wheelchair=True, avoid_crowded=False)
        route["accessibility"] = dict(ACCESSIBILITY_FEATURES)
        return route
