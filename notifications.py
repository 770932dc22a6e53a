import logging
import smtplib
import ssl
import threading
import uuid
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

from firebase_admin import firestore

import config
from models import utc_now_iso

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    "high": "#dc3545",
    "medium": "#ffc107",
    "low": "#28a745",
}


def send_email(to: List[str], subject: str, body: str, html: Optional[str] = None) -> bool:
    host = config.SMTP_HOST
    if not host:
        logger.warning("SMTP_HOST not configured; email '%s' not sent", subject)
        return False
    if not to:
        logger.info("No recipients for email '%s'", subject)
        return False

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = config.SMTP_FROM
    message["To"] = ", ".join(to)
    message.set_content(body)
    if html:
        message.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(host, config.SMTP_PORT, timeout=15) as server:
            if config.SMTP_USE_TLS:
                server.starttls(context=ssl.create_default_context())
            if config.SMTP_USERNAME and config.SMTP_PASSWORD:
                server.login(config.SMTP_USERNAME, config.SMTP_PASSWORD)
            server.send_message(message)
    except Exception:
        logger.exception("Failed to send email '%s'", subject)
        return False
    return True


def new_issue_email(issue: Dict[str, Any]):
    severity = (issue.get("severity") or "low").upper()
    subject = f"{severity}: New Accessibility Issue - {issue.get('type')}"
    body = (
        "New accessibility issue reported\n\n"
        f"Severity: {severity}\n"
        f"Type: {issue.get('type')}\n"
        f"Location: {issue.get('location')}\n"
        f"Coordinates: {issue.get('latitude')}, {issue.get('longitude')}\n"
        f"Description: {issue.get('description')}\n"
        f"Reported by: {issue.get('reporter') or 'Anonymous'}\n"
        f"Time: {issue.get('createdAt')}\n\n"
        "Required action:\n"
        "1. Review the issue details above\n"
        f"2. Visit the Smart Campus Access Map ({config.APP_URL})\n"
        "3. Update the status to \"In Progress\" when you start working on it\n"
        "4. Mark as \"Resolved\" when complete\n\n"
        f"Issue ID: {issue.get('id')}\n"
    )
    color = SEVERITY_COLORS.get(issue.get("severity"), "#007bff")
    html = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px;">'
        "<h2>New Accessibility Issue Reported</h2>"
        f'<p style="background-color: {color}; color: white; padding: 10px;">'
        f"<strong>SEVERITY</strong> {severity}</p>"
        f"<pre>{body}</pre></div>"
    )
    return subject, body, html


def sms_text(issue: Dict[str, Any]) -> str:
    return (
        f"URGENT: {issue.get('type')} at {issue.get('location')}. "
        "Severity: HIGH. Check Smart Campus Access Map for details."
    )


class NotificationManager:
    """
    Maintenance notifications, the audit log and in-app toast messages.

    Records are written to the Firestore ``notifications`` and ``auditLog``
    collections when a client is available and read back from there, so
    they survive restarts and are shared between workers. The in-memory
    lists only hold the most recent ``NOTIFICATION_LOG_LIMIT`` records.
    """

    def __init__(self, db=None, maintenance_emails: Optional[List[str]] = None, log_limit: Optional[int] = None):
        self.db = db
        self.maintenance_emails = list(maintenance_emails or config.MAINTENANCE_EMAILS)
        self.log_limit = config.NOTIFICATION_LOG_LIMIT if log_limit is None else log_limit
        self._notifications: List[Dict[str, Any]] = []
        self._audit_log: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def _push_cloud(self, collection: str, record: Dict[str, Any]) -> None:
        if self.db is None:
            return
        try:
            data = dict(record)
            data["syncedAt"] = firestore.SERVER_TIMESTAMP
            self.db.collection(collection).document(record["id"]).set(data)
        except Exception as e:
            logger.warning("Could not sync %s record to Firebase: %s", collection, e)

    def _read_cloud(self, collection: str, field: Optional[str] = None, value=None) -> Optional[List[Dict[str, Any]]]:
        if self.db is None:
            return None
        query = self.db.collection(collection)
        if field is not None:
            query = query.where(field, "==", value)
        try:
            docs = query.stream()
            return [
                {k: v for k, v in doc.to_dict().items() if k != "syncedAt"}
                for doc in docs
            ]
        except Exception as e:
            logger.warning("Could not read %s from Firebase, using memory: %s", collection, e)
            return None

    def _append(self, records: List[Dict[str, Any]], record: Dict[str, Any]) -> None:
        with self._lock:
            records.append(record)
            if len(records) > self.log_limit:
                del records[: len(records) - self.log_limit]

    def _record(self, **fields) -> Dict[str, Any]:
        record = {
            "id": uuid.uuid4().hex,
            "read": False,
            "createdAt": utc_now_iso(),
        }
        record.update(fields)
        self._append(self._notifications, record)
        self._push_cloud("notifications", record)
        return record

    def notify_maintenance_team(self, issue: Dict[str, Any]) -> List[Dict[str, Any]]:
        records = [
            self._record(
                type="new_issue",
                issueId=issue.get("id"),
                issue=issue,
                severity=issue.get("severity"),
                recipients="maintenance_team",
                userId=None,
            )
        ]
        logger.info("Maintenance team notified about issue %s", issue.get("id"))

        if self.maintenance_emails:
            subject, body, html = new_issue_email(issue)
            if send_email(self.maintenance_emails, subject, body, html):
                records.append(
                    self._record(
                        type="email_sent",
                        issueId=issue.get("id"),
                        recipients=self.maintenance_emails,
                        userId=None,
                    )
                )

        if issue.get("severity") == "high":
            records.append(
                self._record(
                    type="urgent",
                    issueId=issue.get("id"),
                    severity="high",
                    message=sms_text(issue),
                    recipients="maintenance_team",
                    userId=None,
                )
            )
        return records

    def notify_reporter_resolved(self, issue: Dict[str, Any]) -> bool:
        email = issue.get("reporterEmail")
        if not email:
            return False
        body = (
            "Your issue has been resolved!\n\n"
            f"Thank you for reporting: {issue.get('type')}\n"
            f"Location: {issue.get('location')}\n\n"
            "We appreciate your help in improving campus accessibility!\n\n"
            f"Issue ID: {issue.get('id')}\n"
        )
        sent = send_email([email], "Your Accessibility Report - RESOLVED", body)
        if sent:
            logger.info("Resolution confirmation sent for issue %s", issue.get("id"))
        return sent

    def log_status_change(
        self,
        issue_id: str,
        from_status: Optional[str],
        to_status: str,
        notes: str = "",
        changed_by: str = "System",
    ) -> Optional[Dict[str, Any]]:
        if from_status == to_status:
            return None
        entry = {
            "id": uuid.uuid4().hex,
            "issueId": issue_id,
            "action": "status_changed",
            "from": from_status,
            "to": to_status,
            "notes": notes,
            "changedBy": changed_by,
            "timestamp": utc_now_iso(),
        }
        self._append(self._audit_log, entry)
        self._push_cloud("auditLog", entry)
        logger.info("Issue %s status: %s -> %s", issue_id, from_status, to_status)
        return entry

    def get_audit_log(self, issue_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if issue_id:
            entries = self._read_cloud("auditLog", "issueId", issue_id)
        else:
            entries = self._read_cloud("auditLog")
        if entries is None:
            with self._lock:
                entries = list(self._audit_log)
            if issue_id:
                entries = [e for e in entries if e["issueId"] == issue_id]
        return sorted(entries, key=lambda e: e["timestamp"])

    def _visible(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        notifications = self._read_cloud("notifications")
        if notifications is None:
            with self._lock:
                notifications = [dict(n) for n in self._notifications]
        if user_id:
            # broadcast records (no userId) go to everyone
            notifications = [n for n in notifications if n.get("userId") in (None, user_id)]
        return notifications

    def get_unread(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        unread = [n for n in self._visible(user_id) if not n.get("read")]
        return sorted(unread, key=lambda n: n["createdAt"], reverse=True)

    def get_stats(self, user_id: Optional[str] = None) -> Dict[str, int]:
        notifications = self._visible(user_id)
        unread = len([n for n in notifications if not n.get("read")])
        return {
            "total": len(notifications),
            "unread": unread,
            "read": len(notifications) - unread,
        }

    def mark_as_read(self, notification_id: str) -> bool:
        found = False
        with self._lock:
            for notification in self._notifications:
                if notification["id"] == notification_id:
                    notification["read"] = True
                    found = True
                    break
        if self.db is not None:
            try:
                ref = self.db.collection("notifications").document(notification_id)
                if ref.get().exists:
                    ref.update({"read": True})
                    found = True
            except Exception as e:
                logger.warning("Could not mark notification read in Firebase: %s", e)
        return found

    def show(self, message: str, level: str = "info") -> Dict[str, Any]:
        toast = {"message": message, "type": level, "timestamp": utc_now_iso()}
        log = logger.error if level == "danger" else logger.info
        log("[%s] %s", level, message)
        return toast
