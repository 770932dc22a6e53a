import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from firebase_admin import firestore

from models import AuditEntry, IssueFilters, parse_timestamp, utc_now_iso

logger = logging.getLogger(__name__)

ISSUES_COLLECTION = "issues"


class IssueNotFound(Exception):
    def __init__(self, issue_id: str):
        super().__init__(f"Issue {issue_id} not found")
        self.issue_id = issue_id


def average_resolution_hours(issues: List[Dict[str, Any]]) -> float:
    durations = []
    for issue in issues:
        if issue.get("status") != "resolved":
            continue
        created = parse_timestamp(issue.get("createdAt"))
        resolved = parse_timestamp(issue.get("resolvedAt"))
        if created and resolved:
            durations.append((resolved - created).total_seconds() / 3600)
    if not durations:
        return 0
    return round(sum(durations) / len(durations), 1)


def summarize_issues(issues: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_type: Dict[str, int] = {}
    for issue in issues:
        by_type[issue.get("type")] = by_type.get(issue.get("type"), 0) + 1

    return {
        "totalReports": len(issues),
        "byStatus": {
            "pending": len([i for i in issues if i.get("status") == "pending"]),
            "inProgress": len([i for i in issues if i.get("status") == "in-progress"]),
            "resolved": len([i for i in issues if i.get("status") == "resolved"]),
        },
        "byType": by_type,
        "bySeverity": {
            severity: len([i for i in issues if i.get("severity") == severity])
            for severity in ("low", "medium", "high")
        },
        "averageResolutionTime": average_resolution_hours(issues),
    }


def _audit(**kwargs) -> Dict[str, Any]:
    return AuditEntry(**kwargs).model_dump(by_alias=True, exclude_none=True)


class FirebaseSync:
    """Issue persistence on the Firestore ``issues`` collection."""

    def __init__(self, db, user_id: Optional[str] = None):
        self.db = db
        self.user_id = user_id or f"user_{uuid.uuid4().hex[:12]}"
        self._connected = db is not None
        self._unsubscribe_issues = None
        self._unsubscribe_notifications = None
        self._sync_callbacks: List[Callable] = []

    def is_online(self) -> bool:
        return self.db is not None and self._connected

    def on_sync_change(self, callback: Callable) -> None:
        self._sync_callbacks.append(callback)

    def _emit(self, payload: Dict[str, Any], event: str) -> None:
        for callback in self._sync_callbacks:
            try:
                callback(payload, event)
            except Exception:
                logger.exception("Sync callback failed for %s", event)

    def _issues(self):
        return self.db.collection(ISSUES_COLLECTION)

    # -------------------------
    # writes
    # -------------------------
    def save_issue(self, issue: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(issue)
        doc["userId"] = doc.get("userId") or self.user_id
        doc["createdAt"] = doc.get("createdAt") or utc_now_iso()
        doc["updatedAt"] = utc_now_iso()
        doc["status"] = doc.get("status") or "pending"
        doc.setdefault("deleted", False)
        trail = list(doc.get("auditTrail") or [])
        if not trail:
            trail.append(
                _audit(
                    action="created",
                    by=self.user_id,
                    details=f"Issue created by {doc.get('reporter') or 'Anonymous'}",
                )
            )
        doc["auditTrail"] = trail

        try:
            if doc.get("id"):
                self._issues().document(doc["id"]).set(doc, merge=True)
                logger.info("Updated issue %s in Firestore", doc["id"])
            else:
                _, doc_ref = self._issues().add(doc)
                doc["id"] = doc_ref.id
                self._issues().document(doc["id"]).update({"id": doc["id"]})
                logger.info("Created issue %s in Firestore", doc["id"])
        except Exception:
            self._connected = False
            raise

        self._connected = True
        self._emit(doc, "saved")
        return doc

    def update_issue_status(
        self,
        issue_id: str,
        new_status: str,
        notes: str = "",
        updated_by: str = "Anonymous",
    ) -> Dict[str, Any]:
        issue_ref = self._issues().document(issue_id)
        snapshot = issue_ref.get()
        if not snapshot.exists:
            raise IssueNotFound(issue_id)

        entry = _audit(
            action="status_changed",
            by=self.user_id,
            from_status=snapshot.to_dict().get("status"),
            to_status=new_status,
            notes=notes,
            updated_by=updated_by,
        )
        now = utc_now_iso()
        update_data = {
            "status": new_status,
            "updatedAt": now,
            "auditTrail": firestore.ArrayUnion([entry]),
        }
        if notes:
            update_data["statusNotes"] = notes
        if new_status == "resolved":
            update_data["resolvedAt"] = now

        issue_ref.update(update_data)
        logger.info("Updated issue %s status to %s", issue_id, new_status)

        result = {"id": issue_id, "status": new_status}
        self._emit(result, "status_updated")
        return result

    def delete_issue(self, issue_id: str) -> bool:
        # soft delete, the document stays for the audit trail
        self._issues().document(issue_id).update({
            "deleted": True,
            "deletedAt": firestore.SERVER_TIMESTAMP,
            "deletedBy": self.user_id,
        })
        logger.info("Deleted issue %s", issue_id)
        self._emit({"id": issue_id}, "deleted")
        return True

    # -------------------------
    # reads
    # -------------------------
    def get_issues_by_filter(self, filters: Optional[IssueFilters] = None) -> List[Dict[str, Any]]:
        filters = filters or IssueFilters()
        query = self._issues().where("deleted", "==", False)
        if filters.status:
            query = query.where("status", "==", filters.status)
        if filters.type:
            query = query.where("type", "==", filters.type)
        if filters.severity:
            query = query.where("severity", "==", filters.severity)

        issues = []
        for doc in query.order_by("createdAt", direction=firestore.Query.DESCENDING).stream():
            data = doc.to_dict()
            data["id"] = doc.id
            issues.append(data)

        # date range and location text are not indexable equality filters
        return [issue for issue in issues if filters.matches(issue)]

    def get_audit_trail(self, issue_id: str) -> List[Dict[str, Any]]:
        try:
            doc = self._issues().document(issue_id).get()
        except Exception as e:
            logger.error("Error fetching audit trail: %s", e)
            return []
        if not doc.exists:
            return []
        return doc.to_dict().get("auditTrail") or []

    def get_analytics(self, date_range: int = 30) -> Dict[str, Any]:
        start = (datetime.now(timezone.utc) - timedelta(days=date_range)).isoformat()
        docs = (
            self._issues()
            .where("createdAt", ">=", start)
            .where("deleted", "==", False)
            .stream()
        )
        issues = [doc.to_dict() for doc in docs]
        return summarize_issues(issues)

    def export_data(self) -> Dict[str, Any]:
        issues = []
        for doc in self._issues().stream():
            data = doc.to_dict()
            data["id"] = doc.id
            issues.append(data)
        return {
            "exportDate": utc_now_iso(),
            "totalIssues": len(issues),
            "issues": issues,
            "source": "firebase",
        }

    def import_data(self, data: Dict[str, Any]) -> bool:
        issues = data.get("issues") or []
        batch = self.db.batch()
        for issue in issues:
            doc_ref = self._issues().document(issue.get("id"))
            record = {k: v for k, v in issue.items() if k != "id"}
            record.setdefault("deleted", False)
            record["id"] = doc_ref.id
            record["importedAt"] = utc_now_iso()
            record["importedBy"] = self.user_id
            batch.set(doc_ref, record)
        batch.commit()
        logger.info("Imported %d issues to Firestore", len(issues))
        return True

    # -------------------------
    # realtime listeners
    # -------------------------
    def start_issue_sync_listener(self, callback: Callable[[List[Dict[str, Any]]], None]):
        def on_snapshot(docs, changes, read_time):
            issues = []
            for doc in docs:
                data = doc.to_dict()
                data["id"] = doc.id
                issues.append(data)
            callback(issues)

        self._unsubscribe_issues = self._issues().where("deleted", "==", False).on_snapshot(on_snapshot)
        return self._unsubscribe_issues

    def start_notification_listener(self, callback: Callable[[Dict[str, Any]], None]):
        since = (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat()

        def on_snapshot(docs, changes, read_time):
            for change in changes:
                if change.type.name != "ADDED":
                    continue
                issue = change.document.to_dict()
                issue["id"] = change.document.id
                logger.info("New issue notification: %s", issue.get("type"))
                callback({"type": "new_issue", "issue": issue})

        self._unsubscribe_notifications = (
            self._issues()
            .where("createdAt", ">=", since)
            .where("status", "==", "pending")
            .on_snapshot(on_snapshot)
        )
        return self._unsubscribe_notifications

    def stop_listeners(self) -> None:
        for watch in (self._unsubscribe_issues, self._unsubscribe_notifications):
            if watch is not None:
                watch.unsubscribe()
        self._unsubscribe_issues = None
        self._unsubscribe_notifications = None
