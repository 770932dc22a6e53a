import pytest
from firebase_admin import firestore

from firebase_sync import FirebaseSync, IssueNotFound, average_resolution_hours
from models import IssueFilters


@pytest.fixture
def sync(fake_db):
    return FirebaseSync(fake_db, user_id="tester")


def _docs(fake_db):
    return fake_db.collection("issues").docs


def test_save_new_issue_gets_document_id(sync, fake_db):
    saved = sync.save_issue({"type": "parking", "location": "Lot A", "reporter": "Sam"})
    assert saved["id"] in _docs(fake_db)
    doc = _docs(fake_db)[saved["id"]]
    assert doc["id"] == saved["id"]
    assert doc["userId"] == "tester"
    assert doc["deleted"] is False
    assert doc["auditTrail"][0]["action"] == "created"
    assert doc["auditTrail"][0]["details"] == "Issue created by Sam"


def test_save_existing_id_merges(sync, fake_db):
    sync.save_issue({"id": "issue_1", "type": "parking", "severity": "low"})
    sync.save_issue({"id": "issue_1", "severity": "high"})
    doc = _docs(fake_db)["issue_1"]
    assert doc["type"] == "parking"
    assert doc["severity"] == "high"


def test_update_status_appends_audit_and_resolves(sync, fake_db):
    sync.save_issue({"id": "issue_1", "type": "parking"})
    result = sync.update_issue_status("issue_1", "resolved", "fixed", "Facilities")
    assert result == {"id": "issue_1", "status": "resolved"}

    doc = _docs(fake_db)["issue_1"]
    assert doc["status"] == "resolved"
    assert doc["statusNotes"] == "fixed"
    assert "resolvedAt" in doc
    entry = doc["auditTrail"][-1]
    assert entry["action"] == "status_changed"
    assert entry["from"] == "pending"
    assert entry["to"] == "resolved"
    assert entry["updatedBy"] == "Facilities"


def test_update_status_unknown_issue(sync):
    with pytest.raises(IssueNotFound):
        sync.update_issue_status("missing", "resolved")


def test_delete_is_soft(sync, fake_db):
    sync.save_issue({"id": "issue_1", "type": "parking"})
    sync.delete_issue("issue_1")
    doc = _docs(fake_db)["issue_1"]
    assert doc["deleted"] is True
    assert doc["deletedAt"] is firestore.SERVER_TIMESTAMP
    assert sync.get_issues_by_filter() == []


def test_filter_orders_newest_first(sync):
    sync.save_issue({"id": "a", "type": "parking", "severity": "high", "createdAt": "2024-01-01T00:00:00+00:00"})
    sync.save_issue({"id": "b", "type": "parking", "severity": "low", "createdAt": "2024-02-01T00:00:00+00:00"})
    sync.save_issue({"id": "c", "type": "lighting", "severity": "high", "createdAt": "2024-03-01T00:00:00+00:00"})

    assert [i["id"] for i in sync.get_issues_by_filter()] == ["c", "b", "a"]
    high = sync.get_issues_by_filter(IssueFilters(severity="high"))
    assert [i["id"] for i in high] == ["c", "a"]
    ranged = sync.get_issues_by_filter(IssueFilters(start_date="2024-01-15T00:00:00+00:00"))
    assert [i["id"] for i in ranged] == ["c", "b"]


def test_audit_trail(sync):
    sync.save_issue({"id": "a", "type": "parking"})
    sync.update_issue_status("a", "in-progress")
    trail = sync.get_audit_trail("a")
    assert [e["action"] for e in trail] == ["created", "status_changed"]
    assert sync.get_audit_trail("missing") == []


def test_export_and_import(sync, fake_db):
    sync.save_issue({"id": "a", "type": "parking"})
    exported = sync.export_data()
    assert exported["source"] == "firebase"
    assert exported["totalIssues"] == 1

    assert sync.import_data({"issues": [{"id": "x", "type": "lighting"}]})
    imported = [d for d in _docs(fake_db).values() if d.get("importedBy") == "tester"]
    assert len(imported) == 1
    assert imported[0]["id"] == "x"

    # importing the same id again replaces the document
    sync.import_data({"issues": [{"id": "x", "type": "parking"}]})
    assert _docs(fake_db)["x"]["type"] == "parking"
    assert len(_docs(fake_db)) == 2


def test_listeners_push_snapshots(sync, fake_db):
    received = []
    sync.start_issue_sync_listener(received.append)
    query, callback = fake_db.collection("issues").listeners[0]
    sync.save_issue({"id": "a", "type": "parking"})
    callback(query.stream(), [], None)
    assert received[0][0]["id"] == "a"

    sync.stop_listeners()
    assert sync._unsubscribe_issues is None


def test_sync_change_callbacks(sync):
    events = []
    sync.on_sync_change(lambda payload, event: events.append(event))
    sync.save_issue({"id": "a"})
    sync.delete_issue("a")
    assert events == ["saved", "deleted"]


def test_average_resolution_hours():
    issues = [
        {"status": "resolved", "createdAt": "2024-01-01T00:00:00+00:00", "resolvedAt": "2024-01-01T02:00:00+00:00"},
        {"status": "resolved", "createdAt": "2024-01-01T00:00:00+00:00", "resolvedAt": "2024-01-01T05:00:00+00:00"},
        {"status": "pending", "createdAt": "2024-01-01T00:00:00+00:00"},
    ]
    assert average_resolution_hours(issues) == 3.5
    assert average_resolution_hours([]) == 0
