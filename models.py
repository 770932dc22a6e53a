import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value) -> Optional[datetime]:
    """Best-effort conversion of stored timestamps (ISO strings or datetimes) to aware datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def round_half_up(value: float) -> int:
    """Round halves up: 2.5 -> 3, -2.5 -> -2."""
    return int(math.floor(value + 0.5))


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class IssueStatus(str, Enum):
    pending = "pending"
    in_progress = "in-progress"
    resolved = "resolved"


def normalize_status(value):
    if isinstance(value, str):
        value = value.strip().lower().replace("_", "-").replace(" ", "-")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class AuditEntry(_CamelModel):
    action: str
    by: str = "anonymous"
    timestamp: str = Field(default_factory=utc_now_iso)
    from_status: Optional[str] = Field(default=None, alias="from")
    to_status: Optional[str] = Field(default=None, alias="to")
    notes: Optional[str] = None
    updated_by: Optional[str] = None
    details: Optional[str] = None


class Issue(_CamelModel):
    id: Optional[str] = None
    type: str
    location: str
    description: str
    severity: Severity = Severity.low
    status: IssueStatus = IssueStatus.pending
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    reporter: str = "Anonymous"
    reporter_email: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    status_notes: Optional[str] = None
    last_status_update: Optional[str] = None
    resolved_at: Optional[str] = None
    building: Optional[str] = None
    floor: Optional[str] = None
    accessibility_impact: Optional[str] = None
    user_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    deleted: bool = False
    archived: bool = False
    audit_trail: List[AuditEntry] = Field(default_factory=list)

    check_status = field_validator("status", mode="before")(normalize_status)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Issue":
        return cls.model_validate(data)


class IssueCreate(_CamelModel):
    type: str
    location: str
    description: str
    severity: Severity = Severity.low
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    reporter: Optional[str] = None
    reporter_email: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    building: Optional[str] = None
    floor: Optional[str] = None
    accessibility_impact: Optional[str] = None
    user_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("type", "location", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class StatusUpdate(_CamelModel):
    status: IssueStatus
    notes: str = ""
    updated_by: str = "Anonymous"

    check_status = field_validator("status", mode="before")(normalize_status)


class IssueFilters(_CamelModel):
    status: Optional[IssueStatus] = None
    type: Optional[str] = None
    severity: Optional[Severity] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    location: Optional[str] = None

    check_status = field_validator("status", mode="before")(normalize_status)

    def matches(self, issue: Dict[str, Any]) -> bool:
        if self.status and issue.get("status") != self.status:
            return False
        if self.type and issue.get("type") != self.type:
            return False
        if self.severity and issue.get("severity") != self.severity:
            return False
        created = parse_timestamp(issue.get("createdAt"))
        start = parse_timestamp(self.start_date)
        if start and (created is None or created < start):
            return False
        end = parse_timestamp(self.end_date)
        if end and (created is None or created > end):
            return False
        if self.location:
            location = issue.get("location") or ""
            if self.location.lower() not in location.lower():
                return False
        return True


class Preferences(_CamelModel):
    show_resolved_issues: bool = False
    selected_severities: List[Severity] = Field(
        default_factory=lambda: [Severity.low, Severity.medium, Severity.high]
    )
    map_zoom: int = 17
    last_location: Optional[Dict[str, float]] = None

    @classmethod
    def stored_keys(cls, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Re-key an update by the stored (camelCase) names; unknown keys raise ValueError."""
        aliases = {}
        for name, field in cls.model_fields.items():
            aliases[name] = field.alias or name
            aliases[field.alias or name] = field.alias or name
        unknown = [key for key in updates if key not in aliases]
        if unknown:
            raise ValueError(f"Unknown preference: {', '.join(unknown)}")
        return {aliases[key]: value for key, value in updates.items()}


class LocationPing(_CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = None
    user_id: str = "anonymous"
    timestamp: str = Field(default_factory=utc_now_iso)

    # one ISO format, so Firestore range queries on the string compare correctly
    @field_validator("timestamp")
    @classmethod
    def _utc_iso(cls, value: str) -> str:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError("timestamp must be ISO-8601")
        return parsed.astimezone(timezone.utc).isoformat()


class Bounds(BaseModel):
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


class RouteRequest(_CamelModel):
    start_lat: Optional[float] = None
    start_lon: Optional[float] = None
    end_lat: Optional[float] = None
    end_lon: Optional[float] = None
    start_name: Optional[str] = None
    end_name: Optional[str] = None
    wheelchair: bool = False
    avoid_crowded: bool = False


class ImportPayload(BaseModel):
    issues: List[Dict[str, Any]] = Field(default_factory=list)
    preferences: Optional[Dict[str, Any]] = None
    analytics: Optional[Dict[str, Any]] = None
