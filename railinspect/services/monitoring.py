"""
Monitoring Aggregator — cross-module read model for the dashboard.

Each module is a ModuleSource queried on its own. For page P of size L every
source returns its newest P*L records; the per-source lists are merged
newest-first on (created_at, module, id) and the page is cut from the merged
sequence, so page boundaries do not depend on how records spread over the
modules.

A source that fails is logged, rolled back and reported under ``errors``
for its module; the other modules still answer.

Nothing is cached: every call recomputes from the source tables.
"""

import heapq
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from itertools import islice

from flask import current_app
from sqlalchemy import and_, func, or_, select

from railinspect.core.exceptions import Unauthorized, ValidationError
from railinspect.models import MODULE_TYPES, db
from railinspect.models.inspection import (
    DEFECT_STATUSES,
    NORMALIZED_SESSION_STATUSES,
    InspectionSession,
    normalized_status,
    workflow_for,
)
from railinspect.services import defect_ledger
from railinspect.utils.helpers import as_utc, clamp_pagination, parse_date

logger = logging.getLogger(__name__)

SOURCES_EXTENSION_KEY = "railinspect.module_sources"


# ── Filters ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MonitoringFilters:
    start_date: date | None = None
    end_date: date | None = None
    module: str | None = None
    inspector: str | None = None
    status: str | None = None

    @classmethod
    def from_args(cls, args, *, allowed_statuses=NORMALIZED_SESSION_STATUSES):
        """Build filters from query-string args; malformed values raise ValidationError."""
        values = {}
        for key in ("start_date", "end_date"):
            raw = args.get(key)
            if raw:
                parsed = parse_date(raw)
                if parsed is None:
                    raise ValidationError(f"Invalid {key} '{raw}'", details={"field": key})
                values[key] = parsed

        module = (args.get("module") or "").strip().upper() or None
        if module and module not in MODULE_TYPES:
            raise ValidationError(
                f"Unknown module '{module}'",
                details={"field": "module", "allowed": list(MODULE_TYPES)},
            )

        status = (args.get("status") or "").strip().upper() or None
        if status and status not in allowed_statuses:
            raise ValidationError(
                f"Invalid status '{status}'",
                details={"field": "status", "allowed": sorted(allowed_statuses)},
            )

        inspector = (args.get("inspector") or "").strip() or None
        return cls(module=module, inspector=inspector, status=status, **values)

    def date_bounds(self):
        start = datetime.combine(self.start_date, time.min, tzinfo=UTC) if self.start_date else None
        end = datetime.combine(self.end_date, time.max, tzinfo=UTC) if self.end_date else None
        return start, end


# ── Sources ──────────────────────────────────────────────────────────────────


class ModuleSource:
    """One module's slice of the monitoring feed."""

    module_type: str

    def fetch_sessions(self, filters: MonitoringFilters, top: int) -> list[dict]:
        raise NotImplementedError

    def count_sessions(self, filters: MonitoringFilters) -> int:
        raise NotImplementedError

    def fetch_defects(self, filters: MonitoringFilters, top: int) -> list[dict]:
        raise NotImplementedError

    def count_defects(self, filters: MonitoringFilters) -> int:
        raise NotImplementedError

    def summary(self, today: date, trend_start: date, inspector: str | None = None) -> dict:
        raise NotImplementedError


class SqlModuleSource(ModuleSource):
    """ModuleSource over the shared session and defect tables."""

    def __init__(self, module_type: str):
        self.module_type = module_type

    def _status_clause(self, normalized: str):
        # WSP sessions of both workflow variants can coexist
        variants = (False, True) if self.module_type == "WSP" else (False,)
        clauses = []
        for step in variants:
            workflow = workflow_for(self.module_type, wsp_completion_step=step)
            statuses = {workflow["initial"]}
            for sources, target in workflow["transitions"].values():
                statuses |= set(sources) | {target}
            if normalized == "COMPLETED":
                wanted = statuses & workflow["terminal"]
            else:
                wanted = statuses - workflow["terminal"]
            clauses.append(and_(
                InspectionSession.completion_step == step,
                InspectionSession.status.in_(sorted(wanted)),
            ))
        return or_(*clauses)

    def _session_stmt(self, stmt, filters: MonitoringFilters):
        stmt = stmt.where(InspectionSession.module_type == self.module_type)
        start, end = filters.date_bounds()
        if start:
            stmt = stmt.where(InspectionSession.created_at >= start)
        if end:
            stmt = stmt.where(InspectionSession.created_at <= end)
        if filters.inspector:
            stmt = stmt.where(InspectionSession.inspector_id == filters.inspector)
        if filters.status:
            stmt = stmt.where(self._status_clause(filters.status))
        return stmt

    def fetch_sessions(self, filters, top):
        rows = db.session.execute(
            self._session_stmt(select(InspectionSession), filters)
            .order_by(InspectionSession.created_at.desc(), InspectionSession.id.desc())
            .limit(top)
        ).scalars().all()
        return [
            {
                "id": s.id,
                "session_id": s.id,
                "module_type": self.module_type,
                "coach_number": s.coach_number,
                "train_number": s.train_number,
                "inspector_id": s.inspector_id,
                "status": s.status,
                "normalized_status": normalized_status(s.workflow, s.status),
                "created_at": as_utc(s.created_at),
                "last_saved_at": as_utc(s.last_saved_at),
            }
            for s in rows
        ]

    def count_sessions(self, filters):
        return db.session.execute(
            self._session_stmt(select(func.count(InspectionSession.id)), filters)
        ).scalar() or 0

    def _defect_filters(self, filters: MonitoringFilters) -> dict:
        return {
            "start_date": filters.start_date,
            "end_date": filters.end_date,
            "inspector": filters.inspector,
            "status": filters.status,
        }

    def fetch_defects(self, filters, top):
        rows = defect_ledger.find_defects(self.module_type, top=top, **self._defect_filters(filters))
        records = []
        for d in rows:
            record = d.to_dict()
            record["created_at"] = as_utc(d.created_at)
            record["resolved_at"] = as_utc(d.resolved_at)
            records.append(record)
        return records

    def count_defects(self, filters):
        return defect_ledger.count_defects(self.module_type, **self._defect_filters(filters))

    def summary(self, today, trend_start, inspector=None):
        base = MonitoringFilters(inspector=inspector)
        day_start = datetime.combine(today, time.min, tzinfo=UTC)
        day_end = datetime.combine(today, time.max, tzinfo=UTC)

        def count(stmt):
            return db.session.execute(stmt).scalar() or 0

        sessions = select(func.count(InspectionSession.id))
        total = count(self._session_stmt(sessions, base))
        total_today = count(
            self._session_stmt(sessions, base).where(
                InspectionSession.created_at >= day_start,
                InspectionSession.created_at <= day_end,
            )
        )
        active = count(
            self._session_stmt(sessions, base).where(InspectionSession.active_key.is_not(None))
        )

        trend: dict[date, int] = {}
        created = db.session.execute(
            self._session_stmt(select(InspectionSession.created_at), base).where(
                InspectionSession.created_at >= datetime.combine(trend_start, time.min, tzinfo=UTC)
            )
        ).scalars()
        for ts in created:
            day = as_utc(ts).date()
            trend[day] = trend.get(day, 0) + 1

        return {
            "total_sessions": total,
            "total_today": total_today,
            "active_sessions": active,
            "open_defects": defect_ledger.count_defects(self.module_type, inspector=inspector, status="OPEN"),
            "resolved_defects": defect_ledger.count_defects(
                self.module_type, inspector=inspector, status="RESOLVED"
            ),
            "trend": trend,
        }


def init_module_sources(app, sources=None):
    """Register one ModuleSource per module (SqlModuleSource unless given)."""
    registry = {m: SqlModuleSource(m) for m in MODULE_TYPES}
    for source in sources or []:
        registry[source.module_type] = source
    app.extensions[SOURCES_EXTENSION_KEY] = registry


def current_sources() -> dict[str, ModuleSource]:
    return current_app.extensions[SOURCES_EXTENSION_KEY]


# ── Aggregation ──────────────────────────────────────────────────────────────


def _require_monitoring_role(principal):
    roles = current_app.config.get("MONITORING_ROLES", ("admin",))
    if principal is None or principal.role not in roles:
        logger.warning("Monitoring access refused for %s",
                       principal.id if principal else None)
        raise Unauthorized(principal.id if principal else None, roles)


def _selected_sources(module: str | None):
    registry = current_sources()
    if module:
        return [registry[module]] if module in registry else []
    return [registry[m] for m in MODULE_TYPES if m in registry]


def _sort_key(record):
    return (record["created_at"], record["module_type"], record["id"])


def _public(record: dict) -> dict:
    out = dict(record)
    for key, value in record.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
    return out


def _source_failed(kind: str, source, exc: Exception, errors: dict) -> None:
    db.session.rollback()
    logger.exception("Monitoring %s source %s failed", kind, source.module_type,
                     extra={"module_type": source.module_type})
    errors[source.module_type] = str(exc) or exc.__class__.__name__


def _paged(kind: str, principal, page, limit, filters: MonitoringFilters) -> dict:
    _require_monitoring_role(principal)
    page, limit = clamp_pagination(page, limit)
    offset = (page - 1) * limit

    counted, errors, total = [], {}, 0
    for source in _selected_sources(filters.module):
        try:
            if kind == "sessions":
                found = source.count_sessions(filters)
            else:
                found = source.count_defects(filters)
        except Exception as exc:
            _source_failed(kind, source, exc, errors)
            continue
        counted.append((source, found))
        total += found

    items = []
    # Past the last row: nothing to fetch.
    if offset < total:
        streams = []
        for source, found in counted:
            try:
                if kind == "sessions":
                    streams.append(source.fetch_sessions(filters, offset + limit))
                else:
                    streams.append(source.fetch_defects(filters, offset + limit))
            except Exception as exc:
                _source_failed(kind, source, exc, errors)
                total -= found
        merged = heapq.merge(*streams, key=_sort_key, reverse=True)
        items = list(islice(merged, offset, offset + limit))

    return {
        "items": [_public(r) for r in items],
        "page": page,
        "limit": limit,
        "total": total,
        "errors": errors,
    }


def list_sessions(principal, page=1, limit=None, filters: MonitoringFilters | None = None) -> dict:
    """Newest-first page of sessions across modules."""
    return _paged("sessions", principal, page, limit, filters or MonitoringFilters())


def list_defects(principal, page=1, limit=None, filters: MonitoringFilters | None = None) -> dict:
    """Newest-first page of defects across modules."""
    return _paged("defects", principal, page, limit, filters or MonitoringFilters())


def summarize(principal, filters: MonitoringFilters | None = None) -> dict:
    """
    Roll-up counters for the dashboard header and charts.

    Honours the ``module`` and ``inspector`` filters; counters are always
    computed fresh.
    """
    _require_monitoring_role(principal)
    filters = filters or MonitoringFilters()
    today = datetime.now(UTC).date()
    days = max(int(current_app.config.get("SUMMARY_TREND_DAYS", 7)), 1)
    trend_start = today - timedelta(days=days - 1)

    totals = {"total_today": 0, "active_sessions": 0, "open_defects": 0, "resolved_defects": 0}
    distribution, trend, errors = [], {}, {}
    for source in _selected_sources(filters.module):
        try:
            stats = source.summary(today, trend_start, inspector=filters.inspector)
        except Exception as exc:
            _source_failed("summary", source, exc, errors)
            continue
        for key in totals:
            totals[key] += stats[key]
        distribution.append({"module_type": source.module_type, "count": stats["total_sessions"]})
        for day, n in stats["trend"].items():
            trend[day] = trend.get(day, 0) + n

    return {
        "totalToday": totals["total_today"],
        "activeSessions": totals["active_sessions"],
        "openDefects": totals["open_defects"],
        "resolvedDefects": totals["resolved_defects"],
        "moduleDistribution": distribution,
        "session_trend": [
            {"date": (trend_start + timedelta(days=i)).isoformat(),
             "count": trend.get(trend_start + timedelta(days=i), 0)}
            for i in range(days)
        ],
        "defect_status": [
            {"name": "Open", "value": totals["open_defects"]},
            {"name": "Resolved", "value": totals["resolved_defects"]},
        ],
        "errors": errors,
    }
