import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from location_tracking import LocationTracker
from models import Bounds, parse_timestamp

logger = logging.getLogger(__name__)

CROWDED_AREA_THRESHOLD = 3

CROWD_LEVELS = {
    "low": {"level": "low", "description": "Low traffic", "color": "#28a745"},
    "medium": {"level": "medium", "description": "Moderate traffic", "color": "#ffc107"},
    "high": {"level": "high", "description": "High traffic", "color": "#dc3545"},
}

HEATMAP_GRADIENT = {
    0.0: "#00ff00",
    0.3: "#ffff00",
    0.6: "#ff9500",
    1.0: "#ff0000",
}


def crowd_marker(area: Dict[str, Any]) -> Dict[str, Any]:
    """Circle styling for one crowded grid cell."""
    size = area["count"]
    if size < 5:
        color, label = "#28a745", "Low"
    elif size < 15:
        color, label = "#ffc107", "Medium"
    else:
        color, label = "#dc3545", "High"
    opacity = min(size / 30, 0.8)
    return {
        "lat": area["lat"],
        "lng": area["lng"],
        "count": size,
        "radius": 20 + size * 5,
        "color": color,
        "opacity": opacity,
        "fillOpacity": opacity * 0.5,
        "label": f"{label} Traffic",
    }


class HeatmapAnalytics:
    def __init__(self, tracker: LocationTracker):
        self.tracker = tracker

    def heatmap_points(self, bounds: Bounds) -> List[List[float]]:
        return [[p["lat"], p["lng"], p["weight"]] for p in self.tracker.get_heatmap_data(bounds)]

    def crowd_markers(self, threshold: int = CROWDED_AREA_THRESHOLD) -> List[Dict[str, Any]]:
        return [crowd_marker(area) for area in self.tracker.get_crowded_areas(threshold)]

    def analyze_traffic(self, bounds: Bounds) -> Dict[str, Any]:
        heat_data = self.tracker.get_heatmap_data(bounds)
        crowded = self.tracker.get_crowded_areas(CROWDED_AREA_THRESHOLD)
        popular = self.tracker.get_popular_routes(24)
        return {
            "totalPeopleOnCampus": len(heat_data),
            "crowdedAreasCount": len(crowded),
            "crowdedAreas": crowded,
            "popularRoutes": popular,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "analysisWindow": "Last 24 hours",
        }

    def get_crowd_level(self, latitude: float, longitude: float) -> Dict[str, Any]:
        try:
            density = self.tracker.get_crowd_density(latitude, longitude)
        except Exception as e:
            logger.error("Error getting crowd density: %s", e)
            density = None
        if not density:
            return {"level": "unknown", "description": "Data unavailable"}
        return CROWD_LEVELS.get(density["level"], CROWD_LEVELS["low"])

    def get_historical_traffic(self, start: datetime, end: datetime) -> Dict[str, int]:
        """Ping counts per hour of day (``"H:00"``) between two instants."""
        hourly: Dict[str, int] = {}
        for ping in self.tracker.history_since(start, end):
            ts: Optional[datetime] = parse_timestamp(ping.get("timestamp"))
            if ts is None:
                continue
            key = f"{ts.hour}:00"
            hourly[key] = hourly.get(key, 0) + 1
        return hourly
