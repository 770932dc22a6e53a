from conftest import make_issue


def _create(client, **overrides):
    response = client.post("/issues", json=make_issue(**overrides))
    assert response.status_code == 201
    return response.json()["issue"]


def test_home_and_status(client):
    assert client.get("/").json() == {"status": "Backend running"}
    status = client.get("/status").json()
    assert status["storageMode"] == "local"
    assert status["firebaseEnabled"] is False


def test_create_and_fetch_issue(client):
    response = client.post("/issues", json=make_issue(reporterEmail="ana@example.edu"))
    body = response.json()
    assert response.status_code == 201
    assert body["message"] == "Issue reported successfully!"
    assert body["notification"]["type"] == "success"
    assert body["issue"]["maps_link"] == "https://www.google.com/maps?q=-0.4133,34.562"

    fetched = client.get(f"/issues/{body['issue']['id']}").json()
    assert fetched["reporterEmail"] == "ana@example.edu"


def test_create_issue_validation(client):
    assert client.post("/issues", json=make_issue(location=" ")).status_code == 422
    assert client.post("/issues", json=make_issue(severity="extreme")).status_code == 422


def test_report_issue_form(client):
    response = client.post(
        "/report-issue",
        data={"type": "blocked-path", "location": "Dining Hall", "description": "Chairs in ramp"},
    )
    assert response.status_code == 201
    assert response.json()["issue"]["attachments"] == []


def test_unknown_issue_is_404(client):
    assert client.get("/issues/missing").status_code == 404
    assert client.delete("/issues/missing").status_code == 404
    assert client.post("/issues/missing/status", json={"status": "resolved"}).status_code == 404


def test_list_with_filters(client):
    _create(client, severity="high")
    _create(client, severity="low", location="Sports Complex")
    assert len(client.get("/issues").json()) == 2
    high = client.get("/issues", params={"severity": "high"}).json()
    assert [i["severity"] for i in high] == ["high"]
    assert client.get("/issues", params={"status": "done"}).status_code == 422


def test_status_lifecycle(client):
    issue = _create(client)
    response = client.post(
        f"/issues/{issue['id']}/status",
        json={"status": "in_progress", "notes": "crew assigned", "updatedBy": "Ops"},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Issue status updated to in-progress"

    audit = client.get(f"/issues/{issue['id']}/audit").json()
    assert [e["action"] for e in audit["auditTrail"]] == ["created", "status_changed"]
    assert audit["statusLog"][0]["changedBy"] == "Ops"

    assert client.post(f"/issues/{issue['id']}/status", json={"status": "closed"}).status_code == 422


def test_delete_issue(client):
    issue = _create(client)
    assert client.delete(f"/issues/{issue['id']}").json()["message"] == "Issue deleted successfully"
    assert client.get(f"/issues/{issue['id']}").status_code == 404


def test_navigate(client):
    issue = _create(client)
    link = client.get(f"/issues/{issue['id']}/navigate").json()["maps_link"]
    assert link.endswith("q=-0.4133,34.562")

    bare = _create(client, latitude=None, longitude=None)
    assert client.get(f"/issues/{bare['id']}/navigate").status_code == 400


def test_suggest_without_api_key(client, monkeypatch):
    monkeypatch.setattr("config.GOOGLE_API_KEY", None)
    suggestion = client.post("/issues/suggest", data={"description": "Elevator stuck"}).json()
    assert suggestion["type"] == "other"
    assert suggestion["actions"] == ["Manual review required"]


def test_analytics(client):
    _create(client, severity="high")
    body = client.get("/analytics").json()
    assert body["stats"]["highSeverity"] == 1
    assert body["storage"]["totalReports"] == 1
    assert body["accessibilityScore"] == 0


def test_preferences(client):
    assert client.get("/preferences").json()["mapZoom"] == 17
    updated = client.put("/preferences", json={"mapZoom": 15}).json()
    assert updated["mapZoom"] == 15
    assert client.put("/preferences", json={"mapZoom": "far"}).status_code == 422


def test_exports(client):
    assert client.get("/export/csv").status_code == 400

    _create(client, severity="high")
    response = client.get("/export/csv")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="campus_issues_' in response.headers["content-disposition"]

    filtered = client.get("/export/json", params={"severity": "high"})
    assert "campus_issues_high_" in filtered.headers["content-disposition"]
    assert client.get("/export/json", params={"severity": "low"}).status_code == 400

    assert "<table>" in client.get("/export/html").text
    assert client.get("/export/analytics").json()["Total Issues"] == 1


def test_backup_import_and_export(client):
    response = client.post("/data/import", json={
        "issues": [
            {"id": "a", "type": "parking", "location": "Lot A", "description": "Full"},
            {"id": "b", "type": "parking"},
        ],
        "preferences": {"mapZoom": 12},
    })
    assert response.json() == {"success": True, "imported": 1}
    backup = client.get("/data/export").json()
    assert backup["totalIssues"] == 1
    assert client.get("/preferences").json()["mapZoom"] == 12


def test_directions(client):
    assert len(client.get("/directions/locations").json()) == 10
    assert client.get("/directions/search", params={"q": "gym"}).json() == []

    route = client.post("/directions/route", json={"startName": "Main Gate", "endName": "Library"}).json()
    assert route["distance"] > 0
    assert route["instructions"][0]["instruction"] == "Start heading Northeast"

    accessible = client.post("/directions/accessible-route", json={
        "startLat": -0.4145, "startLon": 34.5610, "endName": "Library",
    }).json()
    assert accessible["wheelchair"] is True

    assert client.post("/directions/route", json={"startName": "Moon", "endName": "Library"}).status_code == 404
    assert client.post("/directions/route", json={"endName": "Library"}).status_code == 422


def test_traffic(client):
    for i in range(3):
        assert client.post("/locations", json={"latitude": 0.0001, "longitude": 0.0001, "userId": f"u{i}"}).status_code == 201

    density = client.get("/traffic/density", params={"lat": 0.0001, "lon": 0.0001}).json()
    assert density["density"] == 3
    assert density["level"] == "medium"

    bounds = {"north": 1, "south": -1, "east": 1, "west": -1}
    heat = client.get("/traffic/heatmap", params=bounds).json()
    assert len(heat["points"]) == 3
    assert heat["gradient"]["1.0"] == "#ff0000"

    assert client.get("/traffic/popular").json()[0]["count"] == 3
    assert len(client.get("/traffic/crowded").json()) == 1
    assert client.get("/traffic/analysis", params=bounds).json()["totalPeopleOnCampus"] == 3
    assert client.get("/traffic/crowd-level", params={"lat": 0.0001, "lon": 0.0001}).json()["level"] == "medium"
    assert client.get("/traffic/history", params={"start": "bad", "end": "worse"}).status_code == 422


def test_notifications(client):
    _create(client, severity="high")
    unread = client.get("/notifications").json()
    assert {n["type"] for n in unread} == {"new_issue", "urgent"}
    assert client.post(f"/notifications/{unread[0]['id']}/read").json() == {"success": True}
    assert len(client.get("/notifications").json()) == 1
    assert client.post("/notifications/missing/read").status_code == 404


def test_admin_requires_credentials(client, admin_auth):
    assert client.get("/admin/export/csv").status_code == 401
    assert client.get("/admin/export/csv", auth=("admin", "wrong")).status_code == 401
    assert client.delete("/data").status_code == 401


def test_admin_exports_and_jobs(client, admin_auth):
    _create(client)
    csv_response = client.get("/admin/export/csv", auth=admin_auth)
    assert csv_response.status_code == 200
    assert "preciseLocation" in csv_response.text

    analytics = client.get("/admin/export/analytics", auth=admin_auth).json()
    assert analytics["preciseLocationsIncluded"] is True
    assert analytics["analytics"]["totalIssues"] == 1

    daily = client.post("/admin/jobs/daily-analytics", auth=admin_auth).json()
    assert daily["totalReports"] == 1
    assert client.post("/admin/jobs/monthly-report", params={"year": 2024, "month": 13}, auth=admin_auth).status_code == 422
    assert client.post("/admin/jobs/archive", auth=admin_auth).json() == {"archived": 0}

    assert client.delete("/data", auth=admin_auth).json() == {"success": True}
    assert client.get("/issues").json() == []


def test_import_assigns_ids_and_replaces_existing(client):
    row = {"type": "parking", "location": "Lot A", "description": "Full"}
    assert client.post("/data/import", json={"issues": [row]}).json()["imported"] == 1

    issues = client.get("/issues").json()
    assert len(issues) == 1
    assert issues[0]["id"].startswith("issue_")
    assert issues[0]["createdAt"]
    assert client.get(f"/issues/{issues[0]['id']}").status_code == 200

    updated = {**issues[0], "description": "Still full"}
    client.post("/data/import", json={"issues": [updated]})
    issues = client.get("/issues").json()
    assert len(issues) == 1
    assert issues[0]["description"] == "Still full"


def test_preferences_accept_field_names(client):
    updated = client.put("/preferences", json={"show_resolved_issues": True}).json()
    assert updated["showResolvedIssues"] is True
    assert "show_resolved_issues" not in updated

    response = client.put("/preferences", json={"theme": "dark"})
    assert response.status_code == 422
    assert "theme" in response.json()["detail"]


def test_notification_stats(client):
    _create(client, severity="high")
    assert client.get("/notifications/stats").json() == {"total": 2, "unread": 2, "read": 0}
    unread = client.get("/notifications").json()
    client.post(f"/notifications/{unread[0]['id']}/read")
    assert client.get("/notifications/stats").json() == {"total": 2, "unread": 1, "read": 1}
