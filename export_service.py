"""
CSV / JSON / HTML export of issue lists.

Every exporter returns an ``ExportResult`` the API streams back as a download;
nothing is written to disk.
"""

import csv
import html
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models import IssueFilters, parse_timestamp, round_half_up

logger = logging.getLogger(__name__)

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
JSON_MEDIA_TYPE = "application/json; charset=utf-8"
HTML_MEDIA_TYPE = "text/html; charset=utf-8"


class NothingToExport(Exception):
    pass


@dataclass
class ExportResult:
    filename: str
    content: str
    media_type: str
    count: int


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def format_datetime(timestamp) -> str:
    if not timestamp:
        return ""
    dt = parse_timestamp(timestamp)
    if dt is None:
        return str(timestamp)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def convert_to_csv(rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return ""
    headers = list(rows[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(row.get(header)) for header in headers])
    return buffer.getvalue().rstrip("\n")


def _or_blank(value):
    return "" if value is None else value


def issue_export_rows(issues: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "Issue ID": issue.get("id") or "",
            "Type": issue.get("type") or "",
            "Location": issue.get("location") or "",
            "Description": issue.get("description") or "",
            "Severity": issue.get("severity") or "low",
            "Status": issue.get("status") or "pending",
            "Reporter": issue.get("reporter") or issue.get("reportedBy") or "Anonymous",
            "Latitude": _or_blank(issue.get("latitude")),
            "Longitude": _or_blank(issue.get("longitude")),
            "Created Date": format_datetime(issue.get("createdAt")),
            "Updated Date": format_datetime(issue.get("updatedAt")),
            "Building": issue.get("building") or "",
            "Floor": issue.get("floor") or "",
            "Department": issue.get("department") or "",
            "Phone": issue.get("phone") or "",
            "Email": issue.get("email") or issue.get("reporterEmail") or "",
            "Attachments": len(issue.get("attachments") or []),
            "Notes": issue.get("statusNotes") or "",
            "User ID": issue.get("userId") or "",
            "Tags": "; ".join(issue.get("tags") or []),
        }
        for issue in issues
    ]


def precise_export_rows(issues: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Admin-only layout: includes the exact coordinates of each report."""
    return [
        {
            "issueId": issue.get("id"),
            "type": issue.get("type"),
            "location": issue.get("location"),
            "latitude": _or_blank(issue.get("latitude")),
            "longitude": _or_blank(issue.get("longitude")),
            "preciseLocation": f"{issue.get('latitude')}, {issue.get('longitude')}",
            "description": issue.get("description"),
            "severity": issue.get("severity"),
            "status": issue.get("status"),
            "reporter": issue.get("reporter") or "Anonymous",
            "createdDate": issue.get("createdAt") or "",
            "building": issue.get("building") or "",
            "accessibilityImpact": issue.get("accessibilityImpact") or "",
        }
        for issue in issues
    ]


def _require(issues) -> None:
    if not issues:
        raise NothingToExport("No issues to export")


def export_to_csv(issues: List[Dict[str, Any]], filename: Optional[str] = None) -> ExportResult:
    _require(issues)
    content = convert_to_csv(issue_export_rows(issues))
    filename = filename or f"campus_issues_{_today()}.csv"
    logger.info("Exported %d issues to %s", len(issues), filename)
    return ExportResult(filename, content, CSV_MEDIA_TYPE, len(issues))


def export_to_json(issues: List[Dict[str, Any]], filename: Optional[str] = None) -> ExportResult:
    _require(issues)
    content = json.dumps(issues, indent=2, default=str)
    filename = filename or f"campus_issues_backup_{_today()}.json"
    logger.info("Exported %d issues to %s", len(issues), filename)
    return ExportResult(filename, content, JSON_MEDIA_TYPE, len(issues))


def generate_filename(filters: IssueFilters, fmt: str) -> str:
    parts = ["campus_issues"]
    for value in (filters.status, filters.type, filters.severity):
        if value:
            parts.append(str(value))
    ext = "json" if fmt == "json" else "csv"
    return f"{'_'.join(parts)}_{_today()}.{ext}"


def export_filtered(
    issues: List[Dict[str, Any]],
    filters: Optional[IssueFilters] = None,
    fmt: str = "csv",
) -> ExportResult:
    _require(issues)
    filters = filters or IssueFilters()
    filtered = [issue for issue in issues if filters.matches(issue)]
    logger.info("Filtered %d of %d issues", len(filtered), len(issues))

    filename = generate_filename(filters, fmt)
    if fmt == "json":
        return export_to_json(filtered, filename)
    return export_to_csv(filtered, filename)


# -------------------------
# summary helpers
# -------------------------
def _count_by(issues, field: str, default: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for issue in issues:
        key = issue.get(field) or default
        counts[key] = counts.get(key, 0) + 1
    return counts


def count_by_status(issues):
    return _count_by(issues, "status", "unknown")


def count_by_type(issues):
    return _count_by(issues, "type", "unknown")


def count_by_severity(issues):
    return _count_by(issues, "severity", "low")


def count_by_location(issues):
    return _count_by(issues, "location", "unknown")


def hot_spots(issues, limit: int = 10) -> Dict[str, int]:
    ranked = sorted(count_by_location(issues).items(), key=lambda item: item[1], reverse=True)
    return dict(ranked[:limit])


def response_stats(issues) -> Dict[str, Any]:
    resolved = len([i for i in issues if i.get("status") == "resolved"])
    pending = len([i for i in issues if i.get("status") == "pending"])
    in_progress = len([i for i in issues if i.get("status") == "in-progress"])
    rate = f"{resolved / len(issues) * 100:.2f}%" if resolved else "0%"
    return {
        "Resolved": resolved,
        "In Progress": in_progress,
        "Pending": pending,
        "Resolution Rate": rate,
    }


def average_resolution_time(issues) -> str:
    durations = []
    for issue in issues:
        if issue.get("status") != "resolved":
            continue
        created = parse_timestamp(issue.get("createdAt"))
        finished = parse_timestamp(issue.get("resolvedAt") or issue.get("updatedAt"))
        if created and finished:
            durations.append((finished - created).total_seconds())
    if not durations:
        return "N/A"
    hours = round_half_up(sum(durations) / len(durations) / 3600)
    return f"{hours} hours"


def analytics_summary(issues) -> Dict[str, Any]:
    return {
        "Report Generated": datetime.now(timezone.utc).isoformat(),
        "Total Issues": len(issues),
        "Total by Status": count_by_status(issues),
        "Total by Type": count_by_type(issues),
        "Total by Severity": count_by_severity(issues),
        "Total by Location": count_by_location(issues),
        "Response Statistics": response_stats(issues),
        "Hot Spots": hot_spots(issues),
        "Average Resolution Time": average_resolution_time(issues),
    }


def export_analytics_summary(issues: List[Dict[str, Any]]) -> ExportResult:
    if not issues:
        raise NothingToExport("No issues to analyze")
    content = json.dumps(analytics_summary(issues), indent=2)
    return ExportResult(f"campus_analytics_{_today()}.json", content, JSON_MEDIA_TYPE, len(issues))


def precise_analytics(issues) -> Dict[str, Any]:
    """Location breakdown for the admin analytics export."""
    analytics = {
        "totalIssues": len(issues),
        "byType": count_by_type(issues),
        "bySeverity": count_by_severity(issues),
        "byStatus": count_by_status(issues),
        "byLocation": {},
        "reportedLocations": [],
    }
    for issue in issues:
        key = f"{issue.get('location')} ({issue.get('latitude')}, {issue.get('longitude')})"
        analytics["byLocation"][key] = analytics["byLocation"].get(key, 0) + 1
        if issue.get("latitude") is not None and issue.get("longitude") is not None:
            analytics["reportedLocations"].append({
                "location": issue.get("location"),
                "latitude": issue.get("latitude"),
                "longitude": issue.get("longitude"),
                "type": issue.get("type"),
                "severity": issue.get("severity"),
            })
    return analytics


# -------------------------
# HTML report
# -------------------------
_REPORT_STYLE = """
        body { font-family: Arial, sans-serif; margin: 20px; }
        h1 { color: #333; border-bottom: 2px solid #007bff; padding-bottom: 10px; }
        h2 { color: #555; margin-top: 20px; }
        table { border-collapse: collapse; width: 100%; margin: 10px 0; }
        th, td { border: 1px solid #ddd; padding: 12px; text-align: left; }
        th { background-color: #007bff; color: white; }
        tr:nth-child(even) { background-color: #f9f9f9; }
        .stat { display: inline-block; margin-right: 20px; }
        .stat-value { font-size: 24px; font-weight: bold; color: #007bff; }
"""


def generate_report_html(issues: List[Dict[str, Any]], include_analytics: bool = True) -> str:
    esc = html.escape
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '    <meta charset="utf-8">',
        "    <title>Smart Campus Issues Report</title>",
        f"    <style>{_REPORT_STYLE}    </style>",
        "</head>",
        "<body>",
        "    <h1>Smart Campus Access - Issues Report</h1>",
        f"    <p><strong>Generated:</strong> {generated}</p>",
        "    <h2>Summary Statistics</h2>",
        f'    <div class="stat"><div>Total Issues: <span class="stat-value">{len(issues)}</span></div></div>',
    ]
    if include_analytics:
        for status, count in count_by_status(issues).items():
            parts.append(
                f'    <div class="stat"><div>{esc(status)}: <span class="stat-value">{count}</span></div></div>'
            )

    parts += [
        "    <h2>Issues Details</h2>",
        "    <table>",
        "        <tr><th>ID</th><th>Type</th><th>Location</th><th>Severity</th>"
        "<th>Status</th><th>Created</th><th>Description</th></tr>",
    ]
    for issue in issues:
        cells = [
            issue.get("id") or "N/A",
            issue.get("type") or "N/A",
            issue.get("location") or "N/A",
            issue.get("severity") or "low",
            issue.get("status") or "pending",
            format_datetime(issue.get("createdAt")),
            issue.get("description") or "N/A",
        ]
        parts.append("        <tr>" + "".join(f"<td>{esc(str(c))}</td>" for c in cells) + "</tr>")
    parts += ["    </table>", "</body>", "</html>", ""]
    return "\n".join(parts)


def generate_report(issues: List[Dict[str, Any]], include_analytics: bool = True) -> ExportResult:
    content = generate_report_html(issues, include_analytics)
    return ExportResult(f"campus_report_{_today()}.html", content, HTML_MEDIA_TYPE, len(issues))
