"""
Offline-first storage: every write lands in the local store first and is then
pushed to Firestore best effort. Cloud failures are logged and never fail the
operation. There is no transaction between the two stores; the cloud snapshot
listener simply overwrites the local issue list (last write wins).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from firebase_sync import FirebaseSync, IssueNotFound, summarize_issues
from models import IssueFilters, parse_timestamp, utc_now_iso
from storage import StorageManager, new_issue_id

logger = logging.getLogger(__name__)


class HybridStorage:
    def __init__(self, local: StorageManager, cloud: Optional[FirebaseSync] = None):
        self.local = local
        self.cloud = cloud
        self.use_firebase = cloud is not None and cloud.db is not None
        self.initialized = True
        if self.use_firebase:
            logger.info("Using Firebase + local storage (hybrid mode)")
        else:
            logger.info("Firebase not configured. Using local storage only.")

    def start_realtime_sync(self, on_notification=None) -> None:
        if not self.use_firebase:
            return

        def on_issues(issues: List[Dict[str, Any]]) -> None:
            self.local.set_issues(issues)

        self.cloud.start_issue_sync_listener(on_issues)
        if on_notification is not None:
            self.cloud.start_notification_listener(on_notification)
        logger.info("Real-time sync started")

    def stop_realtime_sync(self) -> None:
        if self.use_firebase:
            self.cloud.stop_listeners()

    # -------------------------
    # issues
    # -------------------------
    def get_issues(self) -> List[Dict[str, Any]]:
        return self.local.get_issues()

    def get_issue_by_id(self, issue_id: str) -> Optional[Dict[str, Any]]:
        return self.local.get_issue_by_id(issue_id)

    def save_issue(self, issue: Dict[str, Any]) -> Dict[str, Any]:
        issue = self.local.save_issue(issue)
        if self.use_firebase:
            try:
                self.cloud.save_issue(issue)
            except Exception as e:
                logger.warning("Firebase save failed, using local only: %s", e)
        return issue

    def update_issue_status(
        self,
        issue_id: str,
        status: str,
        notes: str = "",
        updated_by: str = "Anonymous",
    ) -> Optional[Dict[str, Any]]:
        issue = self.local.get_issue_by_id(issue_id)
        if issue is None:
            return None

        previous = issue.get("status")
        now = utc_now_iso()
        issue["status"] = status
        issue["updatedAt"] = now
        if notes:
            issue["statusNotes"] = notes
            issue["lastStatusUpdate"] = now
        if status == "resolved":
            issue["resolvedAt"] = now
        trail = list(issue.get("auditTrail") or [])
        trail.append({
            "action": "status_changed",
            "by": updated_by,
            "from": previous,
            "to": status,
            "notes": notes,
            "timestamp": now,
        })
        issue["auditTrail"] = trail
        self.local.save_issue(issue)

        if self.use_firebase:
            try:
                self.cloud.update_issue_status(issue_id, status, notes, updated_by)
            except IssueNotFound:
                logger.warning("Issue %s missing in Firestore, pushing local copy", issue_id)
                try:
                    self.cloud.save_issue(issue)
                except Exception as e:
                    logger.warning("Firebase save failed, using local only: %s", e)
            except Exception as e:
                logger.warning("Firebase update failed, using local only: %s", e)
        return issue

    def delete_issue(self, issue_id: str) -> bool:
        deleted = self.local.delete_issue(issue_id)
        if self.use_firebase:
            try:
                self.cloud.delete_issue(issue_id)
            except Exception as e:
                logger.warning("Firebase delete failed, using local only: %s", e)
        return deleted

    def get_issues_by_filter(self, filters: Optional[IssueFilters] = None) -> List[Dict[str, Any]]:
        filters = filters or IssueFilters()
        if self.use_firebase:
            try:
                return self.cloud.get_issues_by_filter(filters)
            except Exception as e:
                logger.warning("Firebase filter failed, using local: %s", e)
        return self.local.get_issues_by_filter(filters.matches)

    def get_audit_trail(self, issue_id: str) -> List[Dict[str, Any]]:
        if self.use_firebase:
            try:
                trail = self.cloud.get_audit_trail(issue_id)
                if trail:
                    return trail
            except Exception as e:
                logger.warning("Failed to fetch audit trail: %s", e)
        issue = self.local.get_issue_by_id(issue_id)
        return (issue or {}).get("auditTrail") or []

    # -------------------------
    # analytics, preferences, backup
    # -------------------------
    def get_analytics(self, date_range: int = 30) -> Dict[str, Any]:
        if self.use_firebase:
            try:
                return self.cloud.get_analytics(date_range)
            except Exception as e:
                logger.warning("Firebase analytics failed, using local: %s", e)

        start = datetime.now(timezone.utc) - timedelta(days=date_range)
        recent = []
        for issue in self.local.get_issues():
            created = parse_timestamp(issue.get("createdAt"))
            if not issue.get("deleted") and created is not None and created >= start:
                recent.append(issue)
        return summarize_issues(recent)

    def get_preferences(self) -> Dict[str, Any]:
        return self.local.get_preferences()

    def set_preference(self, key: str, value) -> bool:
        return self.local.set_preference(key, value)

    def export_data(self) -> Dict[str, Any]:
        if self.use_firebase:
            try:
                return self.cloud.export_data()
            except Exception as e:
                logger.warning("Firebase export failed: %s", e)
        issues = self.local.get_issues()
        return {
            "exportDate": utc_now_iso(),
            "totalIssues": len(issues),
            "issues": issues,
            "source": "local",
        }

    def import_data(self, data: Dict[str, Any]) -> bool:
        if self.use_firebase:
            try:
                return self.cloud.import_data(data)
            except Exception as e:
                logger.warning("Firebase import failed: %s", e)

        merged = {issue.get("id"): issue for issue in self.local.get_issues()}
        for issue in data.get("issues") or []:
            issue = {**issue, "id": issue.get("id") or new_issue_id()}
            merged[issue["id"]] = issue
        self.local.set_issues(list(merged.values()))
        if data.get("preferences"):
            for key, value in data["preferences"].items():
                self.local.set_preference(key, value)
        return True

    def clear_all_data(self) -> bool:
        cleared = self.local.clear_all_data()
        logger.info("Local data cleared")
        return cleared

    def get_status(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "firebaseEnabled": self.use_firebase,
            "firebaseOnline": self.use_firebase and self.cloud.is_online(),
            "storageMode": "hybrid" if self.use_firebase else "local",
            "userId": self.cloud.user_id if self.use_firebase else "local",
        }
