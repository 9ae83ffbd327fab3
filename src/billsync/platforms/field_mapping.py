"""Field and status mappings between the canonical schema and each platform's wire format.

Defines:
- FieldSpec: native field name, value kind, and status vocabulary for one field.
- Per-platform maps (CLEO_*, PRACTICE_PANTHER_*, MYCASE_*) for time entries,
  clients, matters, users, and the query parameters of each list endpoint.
- to_platform_fields(): Converts canonical field dict to the platform payload.
- from_platform_fields(): Converts a platform record to a canonical field dict.

Missing or null native values are left out of the canonical dict so the
Pydantic model defaults apply on read.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, NamedTuple


class FieldSpec(NamedTuple):
    """How one canonical field appears on the wire.

    Kinds:
        string: ``str()`` both ways.
        id: passed through on write, stringified on read.
        int_id: ``int()`` on write (platform expects numeric ids), stringified on read.
        number: ``float()`` both ways.
        boolean: missing/``False`` semantics of the platform (anything but False is True).
        date: ISO ``YYYY-MM-DD`` on the wire, ``datetime.date`` on read.
        status: translated through ``values_out``/``values_in``.
        active_flag: canonical "active"/"inactive" <-> native boolean.
        active_string: canonical boolean <-> native "active"/"inactive".
    """

    name: str
    kind: str = "string"
    values_out: dict[str, str] | None = None
    values_in: dict[str, str] | None = None
    default_out: str | None = None
    default_in: str | None = None


FieldMap = dict[str, FieldSpec]


# ── Status Vocabularies ────────────────────────────────────────────────────

_IDENTITY_TIME_ENTRY_STATUS = {
    "draft": "draft",
    "pending": "pending",
    "approved": "approved",
    "billed": "billed",
}

PRACTICE_PANTHER_TIME_ENTRY_STATUS_OUT = {
    "draft": "Draft",
    "pending": "Pending",
    "approved": "Approved",
    "billed": "Billed",
}

PRACTICE_PANTHER_MATTER_STATUS_OUT = {
    "active": "Open",
    "closed": "Closed",
    "inactive": "Inactive",
}
PRACTICE_PANTHER_MATTER_STATUS_IN = {
    "open": "active",
    "closed": "closed",
    "inactive": "inactive",
}

MYCASE_TIME_ENTRY_STATUS_OUT = {**_IDENTITY_TIME_ENTRY_STATUS, "draft": "unbilled"}
MYCASE_TIME_ENTRY_STATUS_IN = {**_IDENTITY_TIME_ENTRY_STATUS, "unbilled": "draft"}

_IDENTITY_RECORD_STATUS = {"active": "active", "closed": "closed", "inactive": "inactive"}


def _lowered(values: dict[str, str]) -> dict[str, str]:
    """Reverse an outbound status table into a case-insensitive inbound one."""
    return {native.lower(): canonical for canonical, native in values.items()}


# ── Cleo ───────────────────────────────────────────────────────────────────

CLEO_TIME_ENTRY_MAP: FieldMap = {
    "client_id": FieldSpec("contact_id", "id"),
    "matter_id": FieldSpec("matter_id", "id"),
    "date": FieldSpec("date", "date"),
    "hours": FieldSpec("hours", "number"),
    "description": FieldSpec("description"),
    "billable_rate": FieldSpec("rate", "number"),
    "billable": FieldSpec("billable", "boolean"),
    "activity_code": FieldSpec("activity_id", "id"),
    "task_code": FieldSpec("task_id", "id"),
    "user_id": FieldSpec("user_id", "id"),
    "status": FieldSpec(
        "status",
        "status",
        values_out=_IDENTITY_TIME_ENTRY_STATUS,
        values_in=_IDENTITY_TIME_ENTRY_STATUS,
        default_out="draft",
        default_in="draft",
    ),
}

CLEO_CLIENT_MAP: FieldMap = {
    "name": FieldSpec("name"),
    "email": FieldSpec("email"),
    "phone": FieldSpec("phone"),
    "address": FieldSpec("address"),
    "status": FieldSpec("is_active", "active_flag"),
    "default_rate": FieldSpec("default_rate", "number"),
}

CLEO_MATTER_MAP: FieldMap = {
    "client_id": FieldSpec("contact_id", "id"),
    "name": FieldSpec("name"),
    "description": FieldSpec("description"),
    "status": FieldSpec("is_active", "active_flag"),
    "open_date": FieldSpec("open_date", "date"),
    "close_date": FieldSpec("close_date", "date"),
    "practice_area": FieldSpec("practice_area"),
    "responsible_attorney": FieldSpec("responsible_attorney"),
}

CLEO_USER_MAP: FieldMap = {
    "email": FieldSpec("email"),
    "role": FieldSpec("role"),
    "default_rate": FieldSpec("default_rate", "number"),
    "is_active": FieldSpec("is_active", "boolean"),
}

CLEO_TIME_ENTRY_FILTERS: FieldMap = {
    "start_date": FieldSpec("start_date", "date"),
    "end_date": FieldSpec("end_date", "date"),
    "client_id": FieldSpec("contact_id", "id"),
    "matter_id": FieldSpec("matter_id", "id"),
    "user_id": FieldSpec("user_id", "id"),
    "billable": FieldSpec("billable", "boolean"),
    "status": FieldSpec("status", "status", values_out=_IDENTITY_TIME_ENTRY_STATUS),
}

CLEO_CLIENT_FILTERS: FieldMap = {
    "search": FieldSpec("search"),
    "status": FieldSpec("is_active", "active_flag"),
}

CLEO_MATTER_FILTERS: FieldMap = {
    "search": FieldSpec("search"),
    "status": FieldSpec("is_active", "active_flag"),
    "practice_area": FieldSpec("practice_area"),
    "responsible_attorney": FieldSpec("responsible_attorney"),
}


# ── PracticePanther ────────────────────────────────────────────────────────

PRACTICE_PANTHER_TIME_ENTRY_MAP: FieldMap = {
    "client_id": FieldSpec("ContactId", "id"),
    "matter_id": FieldSpec("MatterId", "id"),
    "date": FieldSpec("Date", "date"),
    "hours": FieldSpec("Hours", "number"),
    "description": FieldSpec("Description"),
    "billable_rate": FieldSpec("Rate", "number"),
    "billable": FieldSpec("IsBillable", "boolean"),
    "activity_code": FieldSpec("ActivityId", "id"),
    "task_code": FieldSpec("TaskId", "id"),
    "user_id": FieldSpec("UserId", "id"),
    "status": FieldSpec(
        "Status",
        "status",
        values_out=PRACTICE_PANTHER_TIME_ENTRY_STATUS_OUT,
        values_in=_lowered(PRACTICE_PANTHER_TIME_ENTRY_STATUS_OUT),
        default_out="Draft",
        default_in="draft",
    ),
}

PRACTICE_PANTHER_CLIENT_MAP: FieldMap = {
    "name": FieldSpec("Name"),
    "email": FieldSpec("Email"),
    "phone": FieldSpec("Phone"),
    "address": FieldSpec("Address"),
    "status": FieldSpec("IsActive", "active_flag"),
    "default_rate": FieldSpec("DefaultRate", "number"),
}

PRACTICE_PANTHER_MATTER_MAP: FieldMap = {
    "client_id": FieldSpec("ContactId", "id"),
    "name": FieldSpec("Name"),
    "description": FieldSpec("Description"),
    "status": FieldSpec(
        "Status",
        "status",
        values_out=PRACTICE_PANTHER_MATTER_STATUS_OUT,
        values_in=PRACTICE_PANTHER_MATTER_STATUS_IN,
        default_out="Open",
        default_in="active",
    ),
    "open_date": FieldSpec("OpenDate", "date"),
    "close_date": FieldSpec("CloseDate", "date"),
    "practice_area": FieldSpec("PracticeArea"),
    "responsible_attorney": FieldSpec("ResponsibleAttorney"),
}

PRACTICE_PANTHER_USER_MAP: FieldMap = {
    "email": FieldSpec("Email"),
    "role": FieldSpec("Role"),
    "default_rate": FieldSpec("DefaultRate", "number"),
    "is_active": FieldSpec("IsActive", "boolean"),
}

PRACTICE_PANTHER_TIME_ENTRY_FILTERS: FieldMap = {
    "start_date": FieldSpec("StartDate", "date"),
    "end_date": FieldSpec("EndDate", "date"),
    "client_id": FieldSpec("ContactId", "id"),
    "matter_id": FieldSpec("MatterId", "id"),
    "user_id": FieldSpec("UserId", "id"),
    "billable": FieldSpec("IsBillable", "boolean"),
    "status": FieldSpec(
        "Status", "status", values_out=PRACTICE_PANTHER_TIME_ENTRY_STATUS_OUT
    ),
}

PRACTICE_PANTHER_CLIENT_FILTERS: FieldMap = {
    "search": FieldSpec("Search"),
    "status": FieldSpec("IsActive", "active_flag"),
}

PRACTICE_PANTHER_MATTER_FILTERS: FieldMap = {
    "search": FieldSpec("Search"),
    "status": FieldSpec("Status", "status", values_out=PRACTICE_PANTHER_MATTER_STATUS_OUT),
    "practice_area": FieldSpec("PracticeArea"),
    "responsible_attorney": FieldSpec("ResponsibleAttorney"),
}


# ── MyCase ─────────────────────────────────────────────────────────────────

MYCASE_TIME_ENTRY_MAP: FieldMap = {
    "client_id": FieldSpec("contact_id", "int_id"),
    "matter_id": FieldSpec("case_id", "int_id"),
    "date": FieldSpec("date_performed", "date"),
    "hours": FieldSpec("quantity_in_hours", "number"),
    "description": FieldSpec("description"),
    "billable_rate": FieldSpec("rate", "number"),
    "billable": FieldSpec("billable", "boolean"),
    "activity_code": FieldSpec("activity_type_id", "int_id"),
    "user_id": FieldSpec("user_id", "int_id"),
    "status": FieldSpec(
        "status",
        "status",
        values_out=MYCASE_TIME_ENTRY_STATUS_OUT,
        values_in=MYCASE_TIME_ENTRY_STATUS_IN,
        default_out="unbilled",
        default_in="draft",
    ),
}

MYCASE_CLIENT_MAP: FieldMap = {
    "name": FieldSpec("name"),
    "email": FieldSpec("email_address"),
    "phone": FieldSpec("phone_number"),
    "address": FieldSpec("address"),
    "status": FieldSpec(
        "status",
        "status",
        values_out={"active": "active", "inactive": "inactive"},
        values_in={"active": "active"},
        default_in="inactive",
    ),
}

MYCASE_MATTER_MAP: FieldMap = {
    "client_id": FieldSpec("contact_id", "int_id"),
    "name": FieldSpec("name"),
    "description": FieldSpec("description"),
    "status": FieldSpec(
        "case_stage",
        "status",
        values_out=_IDENTITY_RECORD_STATUS,
        values_in=_IDENTITY_RECORD_STATUS,
        default_in="active",
    ),
    "open_date": FieldSpec("opened_date", "date"),
    "close_date": FieldSpec("closed_date", "date"),
    "practice_area": FieldSpec("practice_area"),
    "responsible_attorney": FieldSpec("lead_counsel_user_id", "int_id"),
}

MYCASE_USER_MAP: FieldMap = {
    "email": FieldSpec("email"),
    "role": FieldSpec("role"),
    "default_rate": FieldSpec("hourly_rate", "number"),
    "is_active": FieldSpec("status", "active_string"),
}

MYCASE_TIME_ENTRY_FILTERS: FieldMap = {
    "start_date": FieldSpec("start_date", "date"),
    "end_date": FieldSpec("end_date", "date"),
    "client_id": FieldSpec("contact_id", "id"),
    "matter_id": FieldSpec("case_id", "id"),
    "user_id": FieldSpec("user_id", "id"),
    "billable": FieldSpec("billable", "boolean"),
    "status": FieldSpec("status", "status", values_out=MYCASE_TIME_ENTRY_STATUS_OUT),
}

MYCASE_CLIENT_FILTERS: FieldMap = {
    "search": FieldSpec("search"),
    "status": FieldSpec("status"),
}

MYCASE_MATTER_FILTERS: FieldMap = {
    "search": FieldSpec("search"),
    "status": FieldSpec("case_stage", "status", values_out=_IDENTITY_RECORD_STATUS),
    "practice_area": FieldSpec("practice_area"),
}


# ── Conversion Functions ───────────────────────────────────────────────────


def _to_int(value: Any) -> Any:
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


def _parse_date(raw: Any) -> dt.date | None:
    if isinstance(raw, dt.datetime):
        return raw.date()
    if isinstance(raw, dt.date):
        return raw
    try:
        return dt.date.fromisoformat(str(raw)[:10])
    except ValueError:
        return None


def _parse_number(raw: Any) -> float | None:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def to_platform_fields(data: dict[str, Any], field_map: FieldMap) -> dict[str, Any]:
    """Convert a canonical field dict to a platform payload or query dict.

    Fields absent from ``field_map`` or set to None are skipped, except
    status fields with a ``default_out``, which always get written.

    Args:
        data: Canonical field names to values (``model_dump(mode="json")`` output).
        field_map: Platform map for the record type.

    Returns:
        Dict keyed by native field names.
    """
    payload: dict[str, Any] = {}

    for field_name, field_spec in field_map.items():
        value = data.get(field_name)
        if value is None:
            if field_spec.default_out is not None:
                payload[field_spec.name] = field_spec.default_out
            continue

        if field_spec.kind == "id":
            payload[field_spec.name] = value
        elif field_spec.kind == "int_id":
            payload[field_spec.name] = _to_int(value)
        elif field_spec.kind == "number":
            payload[field_spec.name] = float(value)
        elif field_spec.kind == "boolean":
            payload[field_spec.name] = bool(value)
        elif field_spec.kind == "date":
            payload[field_spec.name] = value if isinstance(value, str) else value.isoformat()
        elif field_spec.kind == "status":
            values_out = field_spec.values_out or {}
            payload[field_spec.name] = values_out.get(str(value), field_spec.default_out or str(value))
        elif field_spec.kind == "active_flag":
            payload[field_spec.name] = value == "active"
        elif field_spec.kind == "active_string":
            payload[field_spec.name] = "active" if value else "inactive"
        else:
            payload[field_spec.name] = str(value)

    return payload


def from_platform_fields(record: dict[str, Any], field_map: FieldMap) -> dict[str, Any]:
    """Convert a platform record to a canonical field dict.

    Args:
        record: Raw record as returned by the platform API.
        field_map: Platform map for the record type.

    Returns:
        Dict of canonical field names to converted values.
    """
    result: dict[str, Any] = {}

    for field_name, field_spec in field_map.items():
        raw = record.get(field_spec.name)
        if raw is None:
            if field_spec.kind == "status" and field_spec.default_in is not None:
                result[field_name] = field_spec.default_in
            continue

        if field_spec.kind in ("id", "int_id"):
            result[field_name] = str(raw)
        elif field_spec.kind == "number":
            number = _parse_number(raw)
            if number is not None:
                result[field_name] = number
        elif field_spec.kind == "boolean":
            result[field_name] = raw is not False
        elif field_spec.kind == "date":
            parsed = _parse_date(raw)
            if parsed is not None:
                result[field_name] = parsed
        elif field_spec.kind == "status":
            values_in = field_spec.values_in or {}
            status = values_in.get(str(raw).lower(), field_spec.default_in)
            if status is not None:
                result[field_name] = status
        elif field_spec.kind == "active_flag":
            result[field_name] = "active" if raw is not False else "inactive"
        elif field_spec.kind == "active_string":
            result[field_name] = str(raw).lower() == "active"
        else:
            result[field_name] = str(raw)

    return result
