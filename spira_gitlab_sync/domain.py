"""Domain types shared by the clients and the sync services.

Spira objects are decoded from (and encoded back to) the Spira REST JSON
shape; GitLab objects are decoded from python-gitlab resources or plain
dicts. Timestamps are normalized to UTC tz-naive datetimes so they compare
safely across both systems.
"""

import enum
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

_MS_DATE_RE = re.compile(r"/Date\((?P<ms>-?\d+)(?P<tz>[+-]\d{4})?\)/")
_FRACTION_RE = re.compile(r"(?<=:\d\d)\.(\d+)")


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to UTC tz-naive (safe for comparisons)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO8601, date-only and WCF '/Date(ms)/' values into UTC tz-naive datetimes."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return normalize_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    m = _MS_DATE_RE.match(text)
    if m:
        return datetime.fromtimestamp(int(m.group("ms")) / 1000, tz=timezone.utc).replace(tzinfo=None)
    # .NET emits up to 7 fractional digits; fromisoformat wants exactly 3 or 6 on older Pythons.
    text = _FRACTION_RE.sub(lambda f: "." + (f.group(1) + "000000")[:6], text)
    return normalize_utc_naive(datetime.fromisoformat(text.replace("Z", "+00:00")))


def format_spira_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return normalize_utc_naive(dt).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]


def _safe_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute or dict key safely."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


@dataclass(frozen=True)
class DataMapping:
    """One row of a mapping table as seen by the sync engine.

    Never mutated: stale entries are removed and replaced.
    """

    project_id: Optional[int]
    internal_id: int
    external_key: str
    is_primary: bool = True


class CustomPropertyType(str, enum.Enum):
    """Spira custom property types"""
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    LIST = "list"
    MULTI_LIST = "multi_list"
    USER = "user"


_SPIRA_PROPERTY_TYPE_IDS = {
    1: CustomPropertyType.TEXT,
    2: CustomPropertyType.INTEGER,
    3: CustomPropertyType.DECIMAL,
    4: CustomPropertyType.BOOLEAN,
    5: CustomPropertyType.DATE,
    6: CustomPropertyType.LIST,
    7: CustomPropertyType.MULTI_LIST,
    8: CustomPropertyType.USER,
}

# Which slot of the Spira JSON carries the value for each type.
_VALUE_SLOTS = {
    CustomPropertyType.TEXT: "StringValue",
    CustomPropertyType.INTEGER: "IntegerValue",
    CustomPropertyType.DECIMAL: "DecimalValue",
    CustomPropertyType.BOOLEAN: "BooleanValue",
    CustomPropertyType.DATE: "DateTimeValue",
    CustomPropertyType.LIST: "IntegerValue",
    CustomPropertyType.MULTI_LIST: "IntegerListValue",
    CustomPropertyType.USER: "IntegerValue",
}


@dataclass
class CustomPropertyValue:
    """A typed custom property value.

    `value` is a str, int, float, bool, datetime, int (list option / user id)
    or list of ints (multi-list options) depending on `property_type`.
    `property_number` is only kept so the value can be written back to Spira.
    """

    property_type: CustomPropertyType
    value: Any = None
    property_number: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> Optional["CustomPropertyValue"]:
        definition = data.get("Definition") or {}
        type_id = definition.get("CustomPropertyTypeId")
        property_type = _SPIRA_PROPERTY_TYPE_IDS.get(type_id)
        if property_type is None:
            return None
        value = data.get(_VALUE_SLOTS[property_type])
        if property_type == CustomPropertyType.DATE:
            value = parse_datetime(value)
        elif property_type == CustomPropertyType.MULTI_LIST:
            value = list(value or []) or None
        return cls(
            property_type=property_type,
            value=value,
            property_number=data.get("PropertyNumber", definition.get("PropertyNumber")),
        )

    def to_api(self, custom_property_id: int) -> Dict[str, Any]:
        value = self.value
        if self.property_type == CustomPropertyType.DATE:
            value = format_spira_datetime(value)
        elif self.property_type == CustomPropertyType.MULTI_LIST:
            value = list(value) if value else None
        return {
            "PropertyNumber": self.property_number,
            "Definition": {"CustomPropertyId": custom_property_id},
            _VALUE_SLOTS[self.property_type]: value,
        }


@dataclass
class Incident:
    """Spira incident"""

    incident_id: Optional[int]
    project_id: int
    name: str = ""
    description: str = ""  # HTML
    status_id: Optional[int] = None
    type_id: Optional[int] = None
    priority_id: Optional[int] = None
    severity_id: Optional[int] = None
    owner_id: Optional[int] = None
    opener_id: Optional[int] = None
    creation_date: Optional[datetime] = None
    last_update_date: Optional[datetime] = None
    closed_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    resolved_release_id: Optional[int] = None
    concurrency_date: Optional[str] = None
    custom_properties: Dict[int, CustomPropertyValue] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Incident":
        custom_properties: Dict[int, CustomPropertyValue] = {}
        for cp in data.get("CustomProperties") or []:
            prop_id = (cp.get("Definition") or {}).get("CustomPropertyId")
            value = CustomPropertyValue.from_api(cp)
            if prop_id is not None and value is not None:
                custom_properties[int(prop_id)] = value
        return cls(
            incident_id=data.get("IncidentId"),
            project_id=data.get("ProjectId"),
            name=data.get("Name") or "",
            description=data.get("Description") or "",
            status_id=data.get("IncidentStatusId"),
            type_id=data.get("IncidentTypeId"),
            priority_id=data.get("PriorityId"),
            severity_id=data.get("SeverityId"),
            owner_id=data.get("OwnerId"),
            opener_id=data.get("OpenerId"),
            creation_date=parse_datetime(data.get("CreationDate")),
            last_update_date=parse_datetime(data.get("LastUpdateDate")),
            closed_date=parse_datetime(data.get("ClosedDate")),
            start_date=parse_datetime(data.get("StartDate")),
            resolved_release_id=data.get("ResolvedReleaseId"),
            concurrency_date=data.get("ConcurrencyDate"),
            custom_properties=custom_properties,
            raw=dict(data),
        )

    def to_api(self) -> Dict[str, Any]:
        """Encode for create/update; fields Spira sent that we don't model are passed back untouched."""
        data = dict(self.raw)
        data.update(
            {
                "IncidentId": self.incident_id,
                "ProjectId": self.project_id,
                "Name": self.name,
                "Description": self.description,
                "IncidentStatusId": self.status_id,
                "IncidentTypeId": self.type_id,
                "PriorityId": self.priority_id,
                "SeverityId": self.severity_id,
                "OwnerId": self.owner_id,
                "OpenerId": self.opener_id,
                "ClosedDate": format_spira_datetime(self.closed_date),
                "StartDate": format_spira_datetime(self.start_date),
                "ResolvedReleaseId": self.resolved_release_id,
            }
        )
        if self.creation_date is not None:
            data["CreationDate"] = format_spira_datetime(self.creation_date)
        if self.concurrency_date is not None:
            data["ConcurrencyDate"] = self.concurrency_date
        if self.custom_properties:
            data["CustomProperties"] = [
                value.to_api(prop_id) for prop_id, value in sorted(self.custom_properties.items())
            ]
        return data


@dataclass
class Release:
    """Spira release"""

    release_id: Optional[int]
    name: str
    description: str = ""
    version_number: str = ""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status_id: Optional[int] = None
    type_id: Optional[int] = None
    active: bool = True
    creator_id: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Release":
        return cls(
            release_id=data.get("ReleaseId"),
            name=data.get("Name") or "",
            description=data.get("Description") or "",
            version_number=data.get("VersionNumber") or "",
            start_date=parse_datetime(data.get("StartDate")),
            end_date=parse_datetime(data.get("EndDate")),
            status_id=data.get("ReleaseStatusId"),
            type_id=data.get("ReleaseTypeId"),
            active=bool(data.get("Active", True)),
            creator_id=data.get("CreatorId"),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "ReleaseId": self.release_id,
            "Name": self.name,
            "Description": self.description,
            "VersionNumber": self.version_number,
            "StartDate": format_spira_datetime(self.start_date),
            "EndDate": format_spira_datetime(self.end_date),
            "ReleaseStatusId": self.status_id,
            "ReleaseTypeId": self.type_id,
            "Active": self.active,
            "CreatorId": self.creator_id,
            "ResourceCount": 1,
        }


@dataclass
class Comment:
    """Spira incident comment (HTML text)"""

    comment_id: Optional[int]
    artifact_id: Optional[int]
    text: str
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    creation_date: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Comment":
        return cls(
            comment_id=data.get("CommentId"),
            artifact_id=data.get("ArtifactId"),
            text=data.get("Text") or "",
            user_id=data.get("UserId"),
            user_name=data.get("UserName"),
            creation_date=parse_datetime(data.get("CreationDate")),
        )


@dataclass
class Milestone:
    """GitLab milestone (Spira release equivalent)"""

    iid: int
    id: int
    title: str
    description: str = ""
    state: str = "active"
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_gitlab(cls, obj: Any) -> "Milestone":
        return cls(
            iid=int(_safe_attr(obj, "iid")),
            id=int(_safe_attr(obj, "id")),
            title=_safe_attr(obj, "title") or "",
            description=_safe_attr(obj, "description") or "",
            state=_safe_attr(obj, "state") or "active",
            start_date=parse_datetime(_safe_attr(obj, "start_date")),
            due_date=parse_datetime(_safe_attr(obj, "due_date")),
            created_at=parse_datetime(_safe_attr(obj, "created_at")),
        )


@dataclass
class Note:
    """GitLab issue note (Markdown body)"""

    id: Optional[int]
    body: str
    author: Optional[str] = None
    system: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_gitlab(cls, obj: Any) -> "Note":
        return cls(
            id=_safe_attr(obj, "id"),
            body=_safe_attr(obj, "body") or "",
            author=_safe_attr(_safe_attr(obj, "author"), "username"),
            system=bool(_safe_attr(obj, "system", False)),
            created_at=parse_datetime(_safe_attr(obj, "created_at")),
        )


@dataclass
class Issue:
    """GitLab issue"""

    iid: int
    id: int
    title: str = ""
    description: str = ""  # Markdown
    state: str = "opened"
    web_url: Optional[str] = None
    author: Optional[str] = None
    assignees: List[str] = field(default_factory=list)
    milestone: Optional[Milestone] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    notes: List[Note] = field(default_factory=list)

    @classmethod
    def from_gitlab(cls, obj: Any) -> "Issue":
        milestone = _safe_attr(obj, "milestone")
        assignees = [
            u for u in (_safe_attr(a, "username") for a in (_safe_attr(obj, "assignees") or [])) if u
        ]
        return cls(
            iid=int(_safe_attr(obj, "iid")),
            id=int(_safe_attr(obj, "id")),
            title=_safe_attr(obj, "title") or "",
            description=_safe_attr(obj, "description") or "",
            state=_safe_attr(obj, "state") or "opened",
            web_url=_safe_attr(obj, "web_url"),
            author=_safe_attr(_safe_attr(obj, "author"), "username"),
            assignees=assignees,
            milestone=Milestone.from_gitlab(milestone) if milestone else None,
            created_at=parse_datetime(_safe_attr(obj, "created_at")),
            updated_at=parse_datetime(_safe_attr(obj, "updated_at")),
            closed_at=parse_datetime(_safe_attr(obj, "closed_at")),
        )
