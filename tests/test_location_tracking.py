from datetime import datetime, timedelta, timezone

import pytest

from heatmap import HeatmapAnalytics, crowd_marker
from location_tracking import LocationTracker, density_level, grid_cell
from models import Bounds, LocationPing

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def ping(user, lat, lng, minutes_ago=0):
    return LocationPing(
        latitude=lat,
        longitude=lng,
        user_id=user,
        timestamp=(NOW - timedelta(minutes=minutes_ago)).isoformat(),
    )


@pytest.fixture
def tracker():
    return LocationTracker(active_ttl=900)


def test_density_levels():
    assert density_level(0) == "low"
    assert density_level(2) == "low"
    assert density_level(3) == "medium"
    assert density_level(9) == "medium"
    assert density_level(10) == "high"


def test_grid_cell_floors():
    assert grid_cell(0.0001, 0.0004) == (0, 0)
    assert grid_cell(-0.0001, 0.0006) == (-1, 1)


def test_latest_ping_per_user_is_active(tracker):
    tracker.record_location(ping("a", 0.0001, 0.0001, minutes_ago=5), now=NOW)
    tracker.record_location(ping("a", 0.0002, 0.0002, minutes_ago=1), now=NOW)
    active = tracker.active_locations(NOW)
    assert len(active) == 1
    assert active[0]["latitude"] == 0.0002
    assert len(tracker.history_since(NOW - timedelta(hours=1))) == 2


def test_stale_pings_are_not_active(tracker):
    tracker.record_location(ping("a", 0, 0, minutes_ago=30), now=NOW)
    assert tracker.active_locations(NOW) == []


def test_crowd_density_counts_within_radius(tracker):
    for i in range(4):
        tracker.record_location(ping(f"near{i}", 0.0001 * i, 0), now=NOW)
    tracker.record_location(ping("far", 0.01, 0), now=NOW)
    density = tracker.get_crowd_density(0, 0, 50, now=NOW)
    assert density["density"] == 4
    assert density["level"] == "medium"
    assert density["radius"] == 50


def test_heatmap_respects_bounds(tracker):
    tracker.record_location(ping("in", 0.001, 0.001), now=NOW)
    tracker.record_location(ping("out", 1, 1), now=NOW)
    bounds = Bounds(north=0.01, south=-0.01, east=0.01, west=-0.01)
    assert tracker.get_heatmap_data(bounds, now=NOW) == [{"lat": 0.001, "lng": 0.001, "weight": 1}]


def test_popular_routes_ranked_by_cell(tracker):
    for i in range(3):
        tracker.record_location(ping(f"a{i}", 0.0001, 0.0001, minutes_ago=60), now=NOW)
    tracker.record_location(ping("b", 0.0011, 0.0011, minutes_ago=60), now=NOW)
    tracker.record_location(ping("old", 0.0011, 0.0011, minutes_ago=60 * 48), now=NOW)

    routes = tracker.get_popular_routes(24, now=NOW)
    assert [r["count"] for r in routes] == [3, 1]
    assert routes[0]["lat"] == 0
    assert routes[1]["lat"] == pytest.approx(0.001)


def test_crowded_areas_threshold(tracker):
    for i in range(5):
        tracker.record_location(ping(f"u{i}", 0.0001, 0.0001), now=NOW)
    assert len(tracker.get_crowded_areas(5, now=NOW)) == 1
    assert tracker.get_crowded_areas(6, now=NOW) == []
    assert tracker.is_in_crowded_area(0.0001, 0.0001, now=NOW)
    assert not tracker.is_in_crowded_area(0.01, 0.01, now=NOW)


def test_subscribers_receive_pings(tracker):
    seen = []
    unsubscribe = tracker.subscribe(seen.append)
    tracker.record_location(ping("a", 0, 0), now=NOW)
    unsubscribe()
    tracker.record_location(ping("b", 0, 0), now=NOW)
    assert [p["userId"] for p in seen] == ["a"]


def test_pings_mirrored_to_firestore(fake_db):
    tracker = LocationTracker(db=fake_db)
    tracker.record_location(ping("a", 0.5, 0.5), now=NOW)
    assert fake_db.collection("activeLocations").docs["a"]["latitude"] == 0.5
    history = list(fake_db.collection("locationHistory").docs.values())
    assert history[0]["date"] == "2024-05-01"


def test_crowd_marker_styling():
    marker = crowd_marker({"lat": 0, "lng": 0, "count": 6})
    assert marker["color"] == "#ffc107"
    assert marker["radius"] == 50
    assert marker["opacity"] == pytest.approx(0.2)
    assert crowd_marker({"lat": 0, "lng": 0, "count": 40})["opacity"] == 0.8
    assert crowd_marker({"lat": 0, "lng": 0, "count": 2})["label"] == "Low Traffic"


def test_heatmap_analytics(tracker):
    heatmap = HeatmapAnalytics(tracker)
    for i in range(3):
        tracker.record_location(LocationPing(latitude=0.0001, longitude=0.0001, user_id=f"u{i}"))

    bounds = Bounds(north=1, south=-1, east=1, west=-1)
    assert heatmap.heatmap_points(bounds) == [[0.0001, 0.0001, 1]] * 3
    analysis = heatmap.analyze_traffic(bounds)
    assert analysis["totalPeopleOnCampus"] == 3
    assert analysis["crowdedAreasCount"] == 1
    assert heatmap.get_crowd_level(0.0001, 0.0001)["level"] == "medium"


def test_crowd_level_unavailable():
    class Broken:
        def get_crowd_density(self, lat, lon):
            raise RuntimeError("down")

    assert HeatmapAnalytics(Broken()).get_crowd_level(0, 0) == {
        "level": "unknown",
        "description": "Data unavailable",
    }


def test_historical_traffic_by_hour(tracker):
    tracker.record_location(ping("a", 0, 0, minutes_ago=0), now=NOW)
    tracker.record_location(ping("b", 0, 0, minutes_ago=30), now=NOW)
    tracker.record_location(ping("c", 0, 0, minutes_ago=90), now=NOW)
    hourly = HeatmapAnalytics(tracker).get_historical_traffic(NOW - timedelta(hours=3), NOW)
    assert hourly == {"12:00": 1, "11:00": 1, "10:00": 1}


def test_old_pings_are_dropped_from_memory(tracker):
    for i in range(5000):
        tracker.record_location(ping(f"u{i}", 0, 0, minutes_ago=60 * 24 * 30), now=NOW)
    assert tracker._history == []
    assert tracker._active == {}

    tracker.record_location(ping("fresh", 0, 0), now=NOW)
    assert len(tracker._history) == 1
    assert list(tracker._active) == ["fresh"]


def test_history_window_is_configurable():
    tracker = LocationTracker(active_ttl=900, history_hours=1)
    tracker.record_location(ping("a", 0, 0, minutes_ago=90), now=NOW)
    tracker.record_location(ping("b", 0, 0, minutes_ago=30), now=NOW)
    assert [p["userId"] for p in tracker._history] == ["b"]


def test_queries_read_shared_firestore_state(fake_db):
    writer = LocationTracker(db=fake_db, active_ttl=900)
    for i in range(3):
        writer.record_location(ping(f"a{i}", 0.0001, 0.0001, minutes_ago=60), now=NOW)
    writer.record_location(ping("b", 0.0001, 0.0001, minutes_ago=2), now=NOW)

    reader = LocationTracker(db=fake_db, active_ttl=900)
    assert [r["count"] for r in reader.get_popular_routes(24, now=NOW)] == [4]
    active = reader.active_locations(NOW)
    assert [a["userId"] for a in active] == ["b"]
    assert "lastSeen" not in active[0]


def test_ping_timestamps_normalized_to_utc():
    stamped = LocationPing(latitude=0, longitude=0, timestamp="2024-05-01T15:00:00+03:00")
    assert stamped.timestamp == "2024-05-01T12:00:00+00:00"
