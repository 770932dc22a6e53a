import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from hybrid_storage import HybridStorage
from models import AuditEntry, Issue, IssueCreate, IssueFilters, IssueStatus, normalize_status, utc_now_iso
from notifications import NotificationManager
from storage import new_issue_id

logger = logging.getLogger(__name__)


class IssuesManager:
    """Issue lifecycle: report, triage, resolve, delete."""

    def __init__(self, storage: HybridStorage, notifications: NotificationManager):
        self.storage = storage
        self.notifications = notifications

    def _refresh_analytics(self) -> None:
        try:
            self.storage.local.update_analytics()
        except Exception as e:
            logger.warning("Could not refresh analytics: %s", e)

    def create_issue(self, form: IssueCreate) -> Dict[str, Any]:
        now = utc_now_iso()
        reporter = form.reporter or "Anonymous"
        issue = Issue(
            **form.model_dump(exclude={"reporter"}),
            id=new_issue_id(),
            created_at=now,
            updated_at=now,
            reporter=reporter,
            audit_trail=[
                AuditEntry(
                    action="created",
                    by=form.user_id or "anonymous",
                    timestamp=now,
                    details=f"Issue created by {reporter}",
                )
            ],
        )

        try:
            issue = self.storage.save_issue(issue.to_document())
        except Exception as e:
            logger.error("Error creating issue: %s", e)
            return {
                "success": False,
                "message": "Error reporting issue. Please try again.",
            }

        self._refresh_analytics()
        self.notifications.notify_maintenance_team(issue)

        return {
            "success": True,
            "issue": issue,
            "message": "Issue reported successfully!",
        }

    def update_issue_status(
        self,
        issue_id: str,
        status: str,
        notes: str = "",
        updated_by: str = "Anonymous",
    ) -> Dict[str, Any]:
        status = normalize_status(status)
        try:
            IssueStatus(status)
        except ValueError:
            return {"success": False, "message": f"Invalid status: {status}"}

        existing = self.storage.get_issue_by_id(issue_id)
        if existing is None:
            return {"success": False, "message": "Issue not found"}
        previous = existing.get("status")

        try:
            issue = self.storage.update_issue_status(issue_id, status, notes, updated_by)
        except Exception as e:
            logger.error("Error updating issue status: %s", e)
            return {"success": False, "message": "Error updating issue status"}

        self.notifications.log_status_change(issue_id, previous, status, notes, updated_by)
        if status == IssueStatus.resolved.value and previous != status:
            self.notifications.notify_reporter_resolved(issue)
        self._refresh_analytics()

        return {
            "success": True,
            "issue": issue,
            "message": f"Issue status updated to {status}",
        }

    def delete_issue(self, issue_id: str) -> Dict[str, Any]:
        if self.storage.get_issue_by_id(issue_id) is None:
            return {"success": False, "message": "Issue not found"}

        if not self.storage.delete_issue(issue_id):
            return {"success": False, "message": "Error deleting issue"}

        self._refresh_analytics()
        return {"success": True, "message": "Issue deleted successfully"}

    def get_issue(self, issue_id: str) -> Optional[Dict[str, Any]]:
        return self.storage.get_issue_by_id(issue_id)

    def list_issues(self, filters: Optional[IssueFilters] = None) -> List[Dict[str, Any]]:
        return self.storage.get_issues_by_filter(filters)

    def import_issues(self, rows: List[Dict[str, Any]]) -> int:
        """
        Validate raw issue dicts and drop the ones that don't look like issues.

        Rows without an id get a fresh one; a row whose id is already stored
        replaces the stored issue, and within one batch the last row wins.
        """
        valid: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            try:
                IssueCreate.model_validate(row)
                issue = Issue.from_document(row)
            except ValidationError as e:
                logger.warning("Skipping invalid imported issue %s: %s", row.get("id"), e.error_count())
                continue
            issue.id = issue.id or new_issue_id()
            issue.created_at = issue.created_at or utc_now_iso()
            valid[issue.id] = issue.to_document()
        self.storage.import_data({"issues": list(valid.values())})
        self._refresh_analytics()
        return len(valid)
