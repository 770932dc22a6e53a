import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from firebase_admin import firestore

import config
from directions import calculate_distance
from models import Bounds, LocationPing, parse_timestamp

logger = logging.getLogger(__name__)

GRID_SIZE = 0.0005  # degrees, roughly 50 m
POPULAR_ROUTES_LIMIT = 20


def density_level(count: int) -> str:
    if count < 3:
        return "low"
    if count < 10:
        return "medium"
    return "high"


def grid_cell(lat: float, lng: float, grid_size: float = GRID_SIZE):
    return math.floor(lat / grid_size), math.floor(lng / grid_size)


class LocationTracker:
    """
    Collects location pings and answers crowd questions about them.

    Active locations keep the latest ping per user; the history keeps every
    ping. Both are mirrored to the Firestore ``activeLocations`` and
    ``locationHistory`` collections when a client is available, and queries
    read those collections so every worker sees the same crowd. The in-memory
    copies are the fallback and are pruned to the TTL and the history window
    on every ping.
    """

    def __init__(self, db=None, active_ttl: Optional[int] = None, history_hours: Optional[int] = None):
        self.db = db
        self.active_ttl = config.ACTIVE_LOCATION_TTL if active_ttl is None else active_ttl
        self.history_hours = config.LOCATION_HISTORY_HOURS if history_hours is None else history_hours
        self._active: Dict[str, Dict[str, Any]] = {}
        self._history: List[Dict[str, Any]] = []
        self._subscribers: List[Callable] = []
        self._lock = threading.Lock()

    # -------------------------
    # ingestion
    # -------------------------
    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify_subscribers(self, location: Dict[str, Any]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(location)
            except Exception:
                logger.exception("Subscriber error")

    def record_location(self, ping: LocationPing, now: Optional[datetime] = None) -> Dict[str, Any]:
        location = ping.model_dump(by_alias=True)
        with self._lock:
            self._active[ping.user_id] = location
            self._history.append(location)
            self._prune(now or datetime.now(timezone.utc))

        self._notify_subscribers(location)
        self._send_to_firebase(location)
        return location

    def _prune(self, now: datetime) -> None:
        active_cutoff = now - timedelta(seconds=self.active_ttl)
        history_cutoff = now - timedelta(hours=self.history_hours)

        def fresh(location, cutoff):
            seen = parse_timestamp(location.get("timestamp"))
            return seen is not None and seen >= cutoff

        self._active = {
            user: location for user, location in self._active.items() if fresh(location, active_cutoff)
        }
        self._history = [ping for ping in self._history if fresh(ping, history_cutoff)]

    def _send_to_firebase(self, location: Dict[str, Any]) -> None:
        if self.db is None:
            return
        try:
            self.db.collection("activeLocations").document(location["userId"]).set({
                **location,
                "lastSeen": firestore.SERVER_TIMESTAMP,
            })
            self.db.collection("locationHistory").add({
                **location,
                "date": location["timestamp"][:10],
            })
        except Exception as e:
            logger.warning("Could not sync location to Firebase: %s", e)

    def _query_cloud(
        self,
        collection: str,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> Optional[List[Dict[str, Any]]]:
        if self.db is None:
            return None
        query = self.db.collection(collection).where(
            "timestamp", ">=", since.astimezone(timezone.utc).isoformat()
        )
        if until is not None:
            query = query.where("timestamp", "<=", until.astimezone(timezone.utc).isoformat())
        try:
            docs = query.stream()
            return [
                {k: v for k, v in doc.to_dict().items() if k not in ("lastSeen", "date")}
                for doc in docs
            ]
        except Exception as e:
            logger.warning("Could not read %s from Firebase, using memory: %s", collection, e)
            return None

    # -------------------------
    # queries
    # -------------------------
    def active_locations(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.active_ttl)
        cloud = self._query_cloud("activeLocations", cutoff)
        if cloud is not None:
            return cloud

        with self._lock:
            locations = list(self._active.values())
        fresh = []
        for location in locations:
            seen = parse_timestamp(location.get("timestamp"))
            if seen is not None and seen >= cutoff:
                fresh.append(location)
        return fresh

    def history_since(self, since: datetime, until: Optional[datetime] = None) -> List[Dict[str, Any]]:
        cloud = self._query_cloud("locationHistory", since, until)
        if cloud is not None:
            return cloud

        with self._lock:
            history = list(self._history)
        pings = []
        for ping in history:
            ts = parse_timestamp(ping.get("timestamp"))
            if ts is None or ts < since:
                continue
            if until is not None and ts > until:
                continue
            pings.append(ping)
        return pings

    def get_crowd_density(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float = 50,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        count = 0
        for location in self.active_locations(now):
            distance = calculate_distance(latitude, longitude, location["latitude"], location["longitude"])
            if distance <= radius_meters:
                count += 1
        return {
            "density": count,
            "radius": radius_meters,
            "center": {"latitude": latitude, "longitude": longitude},
            "level": density_level(count),
        }

    def get_heatmap_data(self, bounds: Bounds, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return [
            {"lat": loc["latitude"], "lng": loc["longitude"], "weight": 1}
            for loc in self.active_locations(now)
            if bounds.contains(loc["latitude"], loc["longitude"])
        ]

    def get_popular_routes(self, time_range: int = 24, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        grid: Dict[tuple, Dict[str, Any]] = {}
        for ping in self.history_since(now - timedelta(hours=time_range)):
            cell = grid_cell(ping["latitude"], ping["longitude"])
            if cell not in grid:
                grid[cell] = {
                    "count": 0,
                    "lat": cell[0] * GRID_SIZE,
                    "lng": cell[1] * GRID_SIZE,
                }
            grid[cell]["count"] += 1

        ranked = sorted(grid.values(), key=lambda c: c["count"], reverse=True)
        return ranked[:POPULAR_ROUTES_LIMIT]

    def get_crowded_areas(self, threshold: int = 5, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return [area for area in self.get_popular_routes(now=now) if area["count"] >= threshold]

    def is_in_crowded_area(
        self,
        latitude: float,
        longitude: float,
        threshold: int = 5,
        now: Optional[datetime] = None,
    ) -> bool:
        density = self.get_crowd_density(latitude, longitude, 100, now=now)
        return density["density"] >= threshold
