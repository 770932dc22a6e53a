"""
Local key-value persistence for issues, preferences and analytics.

Data lives in a single JSON file with the keys ``scam_issues``,
``scam_preferences`` and ``scam_analytics``. Reads never raise: a missing or
corrupt file reads as empty and the error is logged.
"""

import json
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import config
from models import Preferences, utc_now_iso

logger = logging.getLogger(__name__)

ISSUES_KEY = "scam_issues"
PREFERENCES_KEY = "scam_preferences"
ANALYTICS_KEY = "scam_analytics"


_id_lock = threading.Lock()
_last_id_ms = 0


def new_issue_id() -> str:
    # epoch millis, bumped so two reports in the same millisecond stay distinct
    global _last_id_ms
    with _id_lock:
        _last_id_ms = max(int(time.time() * 1000), _last_id_ms + 1)
        return f"issue_{_last_id_ms}"


def default_analytics() -> Dict[str, Any]:
    return {
        "totalReports": 0,
        "resolvedCount": 0,
        "byType": {},
        "bySeverity": {},
        "byStatus": {},
        "lastUpdated": utc_now_iso(),
    }


class StorageManager:
    def __init__(self, path: Optional[str] = None):
        self.path = path or config.DATA_FILE
        self._lock = threading.RLock()

    # -------------------------
    # raw key-value access
    # -------------------------
    def _read_all(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _get(self, key: str):
        with self._lock:
            return self._read_all().get(key)

    def _set(self, key: str, value) -> None:
        with self._lock:
            try:
                data = self._read_all()
            except (OSError, ValueError) as e:
                backup = f"{self.path}.corrupt"
                logger.error("Local store unreadable, moving it to %s: %s", backup, e)
                os.replace(self.path, backup)
                data = {}
            data[key] = value
            self._write_all(data)

    def _remove(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            data.pop(key, None)
            self._write_all(data)

    def _write_all(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)

    # -------------------------
    # issues
    # -------------------------
    def get_issues(self) -> List[Dict[str, Any]]:
        try:
            return self._get(ISSUES_KEY) or []
        except (OSError, ValueError) as e:
            logger.error("Error loading issues: %s", e)
            return []

    def set_issues(self, issues: List[Dict[str, Any]]) -> None:
        self._set(ISSUES_KEY, issues)

    def save_issue(self, issue: Dict[str, Any]) -> Dict[str, Any]:
        issue["id"] = issue.get("id") or new_issue_id()
        issue["createdAt"] = issue.get("createdAt") or utc_now_iso()
        issue["status"] = issue.get("status") or "pending"

        with self._lock:
            try:
                issues = self.get_issues()
                for index, existing in enumerate(issues):
                    if existing.get("id") == issue["id"]:
                        issues[index] = {**existing, **issue}
                        break
                else:
                    issues.append(issue)
                self.set_issues(issues)
            except OSError as e:
                logger.error("Error saving issue: %s", e)
                raise
        return issue

    def update_issue_status(self, issue_id: str, status: str) -> Optional[Dict[str, Any]]:
        issue = self.get_issue_by_id(issue_id)
        if issue is None:
            return None
        issue["status"] = status
        issue["updatedAt"] = utc_now_iso()
        return self.save_issue(issue)

    def delete_issue(self, issue_id: str) -> bool:
        with self._lock:
            try:
                issues = [i for i in self.get_issues() if i.get("id") != issue_id]
                self.set_issues(issues)
            except OSError as e:
                logger.error("Error deleting issue: %s", e)
                return False
        return True

    def get_issues_by_filter(self, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        return [issue for issue in self.get_issues() if predicate(issue)]

    def get_issue_by_id(self, issue_id: str) -> Optional[Dict[str, Any]]:
        for issue in self.get_issues():
            if issue.get("id") == issue_id:
                return issue
        return None

    def clear_all_issues(self) -> bool:
        try:
            self.set_issues([])
        except OSError as e:
            logger.error("Error clearing issues: %s", e)
            return False
        return True

    # -------------------------
    # preferences
    # -------------------------
    def get_preferences(self) -> Dict[str, Any]:
        try:
            prefs = self._get(PREFERENCES_KEY)
        except (OSError, ValueError) as e:
            logger.error("Error loading preferences: %s", e)
            return {}
        if prefs is None:
            return Preferences().model_dump(by_alias=True)
        return prefs

    def set_preference(self, key: str, value) -> bool:
        prefs = self.get_preferences()
        prefs[key] = value
        try:
            self._set(PREFERENCES_KEY, prefs)
        except OSError as e:
            logger.error("Error saving preference: %s", e)
            return False
        return True

    # -------------------------
    # analytics
    # -------------------------
    def get_analytics(self) -> Dict[str, Any]:
        try:
            return self._get(ANALYTICS_KEY) or default_analytics()
        except (OSError, ValueError) as e:
            logger.error("Error loading analytics: %s", e)
            return {}

    def update_analytics(self) -> Dict[str, Any]:
        issues = self.get_issues()
        analytics = default_analytics()
        analytics["totalReports"] = len(issues)
        analytics["resolvedCount"] = len([i for i in issues if i.get("status") == "resolved"])

        for issue in issues:
            for field, bucket in (("type", "byType"), ("severity", "bySeverity"), ("status", "byStatus")):
                value = issue.get(field)
                analytics[bucket][value] = analytics[bucket].get(value, 0) + 1

        try:
            self._set(ANALYTICS_KEY, analytics)
        except OSError as e:
            logger.error("Error saving analytics: %s", e)
        return analytics

    # -------------------------
    # backup / restore
    # -------------------------
    def export_data(self) -> Dict[str, Any]:
        return {
            "issues": self.get_issues(),
            "preferences": self.get_preferences(),
            "analytics": self.get_analytics(),
            "exportedAt": utc_now_iso(),
        }

    def import_data(self, data: Dict[str, Any]) -> bool:
        try:
            if data.get("issues"):
                self._set(ISSUES_KEY, data["issues"])
            if data.get("preferences"):
                self._set(PREFERENCES_KEY, data["preferences"])
            if data.get("analytics"):
                self._set(ANALYTICS_KEY, data["analytics"])
        except OSError as e:
            logger.error("Error importing data: %s", e)
            return False
        return True

    def clear_all_data(self) -> bool:
        try:
            for key in (ISSUES_KEY, PREFERENCES_KEY, ANALYTICS_KEY):
                self._remove(key)
        except (OSError, ValueError) as e:
            logger.error("Error clearing data: %s", e)
            return False
        return True
