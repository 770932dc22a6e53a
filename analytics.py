import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from firebase_sync import average_resolution_hours
from models import parse_timestamp, round_half_up, utc_now_iso
from storage import StorageManager

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {"low": "#28a745", "medium": "#ffc107", "high": "#dc3545"}
STATUS_COLORS = {"pending": "#ffc107", "in-progress": "#17a2b8", "resolved": "#28a745"}


def _label(value: str) -> str:
    text = value.replace("-", " ")
    return text[:1].upper() + text[1:]


def _created_on(issue: Dict[str, Any]) -> Optional[date]:
    created = parse_timestamp(issue.get("createdAt"))
    return created.date() if created else None


class AnalyticsManager:
    def __init__(self, storage: StorageManager, db=None):
        self.storage = storage
        self.db = db

    def _issues(self) -> List[Dict[str, Any]]:
        return [i for i in self.storage.get_issues() if not i.get("deleted")]

    def get_issue_stats(self) -> Dict[str, int]:
        issues = self._issues()

        def count(field, value):
            return len([i for i in issues if i.get(field) == value])

        return {
            "total": len(issues),
            "resolved": count("status", "resolved"),
            "pending": count("status", "pending"),
            "inProgress": count("status", "in-progress"),
            "highSeverity": count("severity", "high"),
        }

    def get_accessibility_score(self) -> int:
        stats = self.get_issue_stats()
        if stats["total"] == 0:
            return 100
        resolved_pct = stats["resolved"] / stats["total"] * 100
        pending_penalty = stats["pending"] / stats["total"] * 30
        score = max(0, min(100, resolved_pct - pending_penalty))
        return round_half_up(score)

    def get_most_affected_areas(self, limit: int = 5) -> List[Dict[str, Any]]:
        areas: Dict[str, int] = {}
        for issue in self._issues():
            areas[issue.get("location")] = areas.get(issue.get("location"), 0) + 1
        ranked = sorted(areas.items(), key=lambda item: item[1], reverse=True)[:limit]
        return [{"location": location, "count": count} for location, count in ranked]

    def get_report_trend(self, days: int = 7, today: Optional[date] = None) -> List[Dict[str, Any]]:
        today = today or datetime.now(timezone.utc).date()
        trend = {(today - timedelta(days=offset)).isoformat(): 0 for offset in range(days - 1, -1, -1)}
        for issue in self._issues():
            created = _created_on(issue)
            if created and created.isoformat() in trend:
                trend[created.isoformat()] += 1
        return [{"date": day, "count": count} for day, count in trend.items()]

    def chart_data(self) -> Dict[str, List[Dict[str, Any]]]:
        analytics = self.storage.update_analytics()
        by_type = sorted(analytics["byType"].items(), key=lambda item: item[1], reverse=True)[:5]
        return {
            "types": [{"name": _label(t), "count": c} for t, c in by_type],
            "severities": [
                {"name": _label(s), "count": analytics["bySeverity"].get(s, 0), "color": SEVERITY_COLORS[s]}
                for s in ("low", "medium", "high")
            ],
            "statuses": [
                {"name": _label(s), "count": analytics["byStatus"].get(s, 0), "color": STATUS_COLORS[s]}
                for s in ("pending", "in-progress", "resolved")
            ],
        }

    def summary(self) -> Dict[str, Any]:
        analytics = self.storage.update_analytics()
        return {
            "totals": {
                "totalReports": analytics["totalReports"],
                "resolved": analytics["resolvedCount"],
                "pending": analytics["byStatus"].get("pending", 0),
            },
            "stats": self.get_issue_stats(),
            "accessibilityScore": self.get_accessibility_score(),
            "mostAffectedAreas": self.get_most_affected_areas(),
            "trend": self.get_report_trend(),
            "charts": self.chart_data(),
        }

    # -------------------------
    # scheduled jobs, run on demand
    # -------------------------
    def _store(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        if self.db is None:
            return
        try:
            self.db.collection(collection).document(doc_id).set(data)
        except Exception as e:
            logger.warning("Could not store %s/%s in Firebase: %s", collection, doc_id, e)

    def aggregate_daily_analytics(self, day: Optional[date] = None) -> Dict[str, Any]:
        day = day or datetime.now(timezone.utc).date()
        issues = [i for i in self._issues() if _created_on(i) == day]
        resolved = [i for i in issues if i.get("status") == "resolved" and i.get("resolvedAt")]

        by_severity = {"high": 0, "medium": 0, "low": 0}
        by_type: Dict[str, int] = {}
        for issue in issues:
            by_severity[issue.get("severity")] = by_severity.get(issue.get("severity"), 0) + 1
            by_type[issue.get("type")] = by_type.get(issue.get("type"), 0) + 1

        report = {
            "date": day.isoformat(),
            "totalReports": len(issues),
            "resolved": len(resolved),
            "pending": len(issues) - len(resolved),
            "resolutionRate": round_half_up(len(resolved) / len(issues) * 100) if issues else 0,
            "averageResolutionTime": average_resolution_hours(resolved),
            "bySeverity": by_severity,
            "byType": by_type,
        }
        self._store("analytics", day.isoformat(), report)
        logger.info(
            "Analytics computed for %s: total %d, resolved %d, avg %sh",
            day, len(issues), len(resolved), report["averageResolutionTime"],
        )
        return report

    def generate_monthly_report(self, year: int, month: int) -> Dict[str, Any]:
        first = date(year, month, 1)
        next_month = date(year + (month // 12), month % 12 + 1, 1)
        issues = [i for i in self._issues() if _created_on(i) and first <= _created_on(i) < next_month]
        resolved = [i for i in issues if i.get("status") == "resolved" and i.get("resolvedAt")]

        hotspots: Dict[str, int] = {}
        for issue in issues:
            hotspots[issue.get("location")] = hotspots.get(issue.get("location"), 0) + 1

        report = {
            "month": first.strftime("%B %Y"),
            "totalReports": len(issues),
            "resolved": len(resolved),
            "pending": len(issues) - len(resolved),
            "resolutionRate": round_half_up(len(resolved) / len(issues) * 100) if issues else 0,
            "averageResolutionTime": average_resolution_hours(resolved),
            "hotspots": hotspots,
            "generatedAt": utc_now_iso(),
        }
        self._store("reports", first.isoformat(), report)
        logger.info("Monthly report generated: %s", report["month"])
        return report

    def archive_old_issues(self, months: int = 3, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=30 * months)
        archived = 0
        for issue in self.storage.get_issues():
            if issue.get("status") != "resolved" or issue.get("archived"):
                continue
            resolved_at = parse_timestamp(issue.get("resolvedAt"))
            if resolved_at is None or resolved_at >= cutoff:
                continue
            issue["archived"] = True
            issue["archivedAt"] = utc_now_iso()
            self.storage.save_issue(issue)
            if self.db is not None:
                try:
                    self.db.collection("issues").document(issue["id"]).update(
                        {"archived": True, "archivedAt": issue["archivedAt"]}
                    )
                except Exception as e:
                    logger.warning("Could not archive %s in Firebase: %s", issue["id"], e)
            archived += 1
        logger.info("Archived %d old issues", archived)
        return archived
