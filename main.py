import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import ValidationError

import ai_service
import cloudinary_config
import config
import export_service
from analytics import AnalyticsManager
from auth_config import verify_user
from directions import Directions, maps_link
from export_service import NothingToExport
from firebase_config import get_db
from firebase_sync import FirebaseSync, IssueNotFound
from heatmap import HEATMAP_GRADIENT, HeatmapAnalytics
from hybrid_storage import HybridStorage
from issues import IssuesManager
from location_tracking import LocationTracker
from models import (
    Bounds,
    ImportPayload,
    IssueCreate,
    IssueFilters,
    LocationPing,
    Preferences,
    RouteRequest,
    StatusUpdate,
    parse_timestamp,
)
from notifications import NotificationManager
from storage import StorageManager

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class Services:
    """Everything the routes need, wired once per process."""

    def __init__(self, db=None, data_file: Optional[str] = None, maintenance_emails=None):
        self.db = db
        self.local = StorageManager(data_file)
        self.cloud = FirebaseSync(db) if db is not None else None
        self.storage = HybridStorage(self.local, self.cloud)
        self.notifications = NotificationManager(db, maintenance_emails)
        self.issues = IssuesManager(self.storage, self.notifications)
        self.tracker = LocationTracker(db)
        self.heatmap = HeatmapAnalytics(self.tracker)
        self.directions = Directions(crowd_check=self.tracker.is_in_crowded_area)
        self.analytics = AnalyticsManager(self.local, db)


services = Services(db=get_db())


@asynccontextmanager
async def lifespan(app: FastAPI):
    services.storage.start_realtime_sync(
        on_notification=lambda n: logger.info("New issue from cloud: %s", n["issue"].get("id"))
    )
    yield
    services.storage.stop_realtime_sync()


app = FastAPI(
    title="Campus Accessibility Issue API",
    description="Report, triage and resolve campus accessibility issues",
    version="1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

security = HTTPBasic()


@app.exception_handler(IssueNotFound)
async def issue_not_found_handler(request, exc: IssueNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(NothingToExport)
async def nothing_to_export_handler(request, exc: NothingToExport):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def require_admin(credentials: HTTPBasicCredentials = Depends(security)):
    user = verify_user("admin", credentials.username, credentials.password, db=services.db)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Admin access required",
            headers={"WWW-Authenticate": "Basic"},
        )
    return user


def _filters(**kwargs) -> IssueFilters:
    try:
        return IssueFilters(**{k: v for k, v in kwargs.items() if v is not None})
    except ValidationError as e:
        raise RequestValidationError(e.errors())


def _download(result: export_service.ExportResult) -> Response:
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


def _with_links(issue: Dict[str, Any]) -> Dict[str, Any]:
    if issue.get("latitude") is not None and issue.get("longitude") is not None:
        return {**issue, "maps_link": maps_link(issue["latitude"], issue["longitude"])}
    return issue


def _get_issue_or_404(issue_id: str) -> Dict[str, Any]:
    issue = services.issues.get_issue(issue_id)
    if issue is None:
        raise IssueNotFound(issue_id)
    return issue


@app.get("/")
def home():
    return {"status": "Backend running"}


@app.get("/status")
def storage_status():
    return services.storage.get_status()


# -------------------------
# issues
# -------------------------
def _create(form: IssueCreate):
    result = services.issues.create_issue(form)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["message"])
    result["notification"] = services.notifications.show(result["message"], "success")
    result["issue"] = _with_links(result["issue"])
    return result


@app.post("/issues", status_code=201)
def create_issue(form: IssueCreate):
    return _create(form)


@app.post("/report-issue", status_code=201)
async def report_issue(
    type: str = Form(...),
    location: str = Form(...),
    description: str = Form(...),
    severity: str = Form("low"),
    latitude: Optional[float] = Form(None),
    longitude: Optional[float] = Form(None),
    reporter: Optional[str] = Form(None),
    reporter_email: Optional[str] = Form(None),
    image: UploadFile = File(None),
):
    attachments: List[str] = []

    # Upload photo if provided
    if image:
        image_url = cloudinary_config.upload_attachment(image.file)
        if image_url:
            attachments.append(image_url)

    try:
        form = IssueCreate(
            type=type,
            location=location,
            description=description,
            severity=severity,
            latitude=latitude,
            longitude=longitude,
            reporter=reporter,
            reporter_email=reporter_email,
            attachments=attachments,
        )
    except ValidationError as e:
        raise RequestValidationError(e.errors())

    return _create(form)


@app.get("/issues")
def list_issues(
    status: Optional[str] = None,
    type: Optional[str] = None,
    severity: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    location: Optional[str] = None,
):
    filters = _filters(
        status=status,
        type=type,
        severity=severity,
        start_date=start_date,
        end_date=end_date,
        location=location,
    )
    return [_with_links(issue) for issue in services.issues.list_issues(filters)]


@app.post("/issues/suggest")
def suggest_issue(description: str = Form(...)):
    return ai_service.suggest_classification(description)


@app.get("/issues/{issue_id}")
def get_issue(issue_id: str):
    return _with_links(_get_issue_or_404(issue_id))


@app.post("/issues/{issue_id}/status")
def update_status(issue_id: str, update: StatusUpdate):
    result = services.issues.update_issue_status(issue_id, update.status, update.notes, update.updated_by)
    if not result["success"]:
        if result["message"] == "Issue not found":
            raise IssueNotFound(issue_id)
        raise HTTPException(status_code=400, detail=result["message"])
    result["notification"] = services.notifications.show(result["message"], "success")
    return result


@app.delete("/issues/{issue_id}")
def delete_issue(issue_id: str):
    result = services.issues.delete_issue(issue_id)
    if not result["success"]:
        if result["message"] == "Issue not found":
            raise IssueNotFound(issue_id)
        raise HTTPException(status_code=500, detail=result["message"])
    result["notification"] = services.notifications.show(result["message"], "success")
    return result


@app.get("/issues/{issue_id}/audit")
def audit_trail(issue_id: str):
    _get_issue_or_404(issue_id)
    return {
        "issue_id": issue_id,
        "auditTrail": services.storage.get_audit_trail(issue_id),
        "statusLog": services.notifications.get_audit_log(issue_id),
    }


@app.get("/issues/{issue_id}/navigate")
def navigate(issue_id: str):
    issue = _get_issue_or_404(issue_id)
    if issue.get("latitude") is None or issue.get("longitude") is None:
        raise HTTPException(status_code=400, detail="Issue has no coordinates")
    return {"maps_link": maps_link(issue["latitude"], issue["longitude"])}


# -------------------------
# analytics & preferences
# -------------------------
@app.get("/analytics")
def analytics(date_range: int = 30):
    summary = services.analytics.summary()
    summary["storage"] = services.storage.get_analytics(date_range)
    return summary


@app.get("/preferences")
def get_preferences():
    return services.storage.get_preferences()


@app.put("/preferences")
def update_preferences(updates: Dict[str, Any]):
    try:
        updates = Preferences.stored_keys(updates)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    current = services.storage.get_preferences()
    try:
        merged = Preferences.model_validate({**current, **updates}).model_dump(by_alias=True)
    except ValidationError as e:
        raise RequestValidationError(e.errors())
    for key in updates:
        services.storage.set_preference(key, merged[key])
    return services.storage.get_preferences()


# -------------------------
# export / backup
# -------------------------
@app.get("/export/csv")
def export_csv(
    status: Optional[str] = None,
    type: Optional[str] = None,
    severity: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    location: Optional[str] = None,
):
    issues = services.storage.get_issues()
    filters = _filters(
        status=status, type=type, severity=severity,
        start_date=start_date, end_date=end_date, location=location,
    )
    if filters.model_dump(exclude_none=True):
        return _download(export_service.export_filtered(issues, filters, "csv"))
    return _download(export_service.export_to_csv(issues))


@app.get("/export/json")
def export_json(
    status: Optional[str] = None,
    type: Optional[str] = None,
    severity: Optional[str] = None,
):
    issues = services.storage.get_issues()
    filters = _filters(status=status, type=type, severity=severity)
    if filters.model_dump(exclude_none=True):
        return _download(export_service.export_filtered(issues, filters, "json"))
    return _download(export_service.export_to_json(issues))


@app.get("/export/html")
def export_html(include_analytics: bool = True):
    return _download(export_service.generate_report(services.storage.get_issues(), include_analytics))


@app.get("/export/analytics")
def export_analytics():
    return _download(export_service.export_analytics_summary(services.storage.get_issues()))


@app.get("/data/export")
def data_export():
    return services.storage.export_data()


@app.post("/data/import")
def data_import(payload: ImportPayload):
    try:
        preferences = Preferences.stored_keys(payload.preferences or {})
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    imported = services.issues.import_issues(payload.issues)
    for key, value in preferences.items():
        services.storage.set_preference(key, value)
    return {"success": True, "imported": imported}


@app.delete("/data")
def clear_data(admin=Depends(require_admin)):
    return {"success": services.storage.clear_all_data()}


# -------------------------
# directions
# -------------------------
@app.get("/directions/locations")
def campus_locations():
    return services.directions.campus_locations


@app.get("/directions/search")
def search_locations(q: str = ""):
    return services.directions.search_locations(q)


def _route_points(req: RouteRequest):
    start = (req.start_lat, req.start_lon)
    end = (req.end_lat, req.end_lon)
    if req.start_name:
        loc = services.directions.get_location_by_name(req.start_name)
        if loc is None:
            raise HTTPException(status_code=404, detail=f"Unknown location: {req.start_name}")
        start = (loc["lat"], loc["lon"])
    if req.end_name:
        loc = services.directions.get_location_by_name(req.end_name)
        if loc is None:
            raise HTTPException(status_code=404, detail=f"Unknown location: {req.end_name}")
        end = (loc["lat"], loc["lon"])
    if None in start or None in end:
        raise HTTPException(status_code=422, detail="Start and end coordinates or names are required")
    return start, end


@app.post("/directions/route")
def route(req: RouteRequest):
    (start_lat, start_lon), (end_lat, end_lon) = _route_points(req)
    return services.directions.get_route(
        start_lat, start_lon, end_lat, end_lon,
        wheelchair=req.wheelchair,
        avoid_crowded=req.avoid_crowded,
    )


@app.post("/directions/accessible-route")
def accessible_route(req: RouteRequest):
    (start_lat, start_lon), (end_lat, end_lon) = _route_points(req)
    return services.directions.get_accessible_route(start_lat, start_lon, end_lat, end_lon)


# -------------------------
# location pings & traffic
# -------------------------
@app.post("/locations", status_code=201)
def record_location(ping: LocationPing):
    return services.tracker.record_location(ping)


@app.get("/traffic/density")
def crowd_density(lat: float, lon: float, radius: float = 50):
    return services.tracker.get_crowd_density(lat, lon, radius)


@app.get("/traffic/heatmap")
def heatmap(north: float, south: float, east: float, west: float):
    bounds = Bounds(north=north, south=south, east=east, west=west)
    return {
        "points": services.heatmap.heatmap_points(bounds),
        "gradient": {str(k): v for k, v in HEATMAP_GRADIENT.items()},
    }


@app.get("/traffic/popular")
def popular_routes(hours: int = 24):
    return services.tracker.get_popular_routes(hours)


@app.get("/traffic/crowded")
def crowded_areas(threshold: int = 3):
    return services.heatmap.crowd_markers(threshold)


@app.get("/traffic/analysis")
def traffic_analysis(north: float, south: float, east: float, west: float):
    bounds = Bounds(north=north, south=south, east=east, west=west)
    return services.heatmap.analyze_traffic(bounds)


@app.get("/traffic/crowd-level")
def crowd_level(lat: float, lon: float):
    return services.heatmap.get_crowd_level(lat, lon)


@app.get("/traffic/history")
def historical_traffic(start: str, end: str):
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        raise HTTPException(status_code=422, detail="start and end must be ISO timestamps")
    return services.heatmap.get_historical_traffic(start_dt, end_dt)


# -------------------------
# notifications
# -------------------------
@app.get("/notifications")
def unread_notifications(user_id: Optional[str] = None):
    return services.notifications.get_unread(user_id)


@app.get("/notifications/stats")
def notification_stats(user_id: Optional[str] = None):
    return services.notifications.get_stats(user_id)


@app.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str):
    if not services.notifications.mark_as_read(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True}


# -------------------------
# admin
# -------------------------
@app.get("/admin/export/csv")
def admin_export_csv(admin=Depends(require_admin)):
    issues = [i for i in services.storage.get_issues() if not i.get("deleted")]
    content = export_service.convert_to_csv(export_service.precise_export_rows(issues))
    stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    logger.info("Admin %s exported %d issues", admin.get("username"), len(issues))
    return _download(export_service.ExportResult(
        f"issues_{stamp}.csv", content, export_service.CSV_MEDIA_TYPE, len(issues)
    ))


@app.get("/admin/export/analytics")
def admin_export_analytics(admin=Depends(require_admin)):
    issues = [i for i in services.storage.get_issues() if not i.get("deleted")]
    return {
        "success": True,
        "analytics": export_service.precise_analytics(issues),
        "preciseLocationsIncluded": True,
        "exportedBy": admin.get("username"),
    }


@app.post("/admin/jobs/daily-analytics")
def run_daily_analytics(day: Optional[date] = None, admin=Depends(require_admin)):
    return services.analytics.aggregate_daily_analytics(day)


@app.post("/admin/jobs/monthly-report")
def run_monthly_report(year: int, month: int, admin=Depends(require_admin)):
    if not 1 <= month <= 12:
        raise HTTPException(status_code=422, detail="month must be 1-12")
    return services.analytics.generate_monthly_report(year, month)


@app.post("/admin/jobs/archive")
def run_archive(months: int = 3, admin=Depends(require_admin)):
    return {"archived": services.analytics.archive_old_issues(months)}
