"""
AEGIS Record Store Module
Durable local table of incident reports and the responder session.
"""
from .models import (
    IncidentReport,
    ReportFilter,
    ReportInput,
    Session,
    PENDING,
    init_store_schema,
)
from .store import ReportStore, ReportQueryResult, Subscription

__all__ = [
    "IncidentReport",
    "ReportFilter",
    "ReportInput",
    "Session",
    "PENDING",
    "init_store_schema",
    "ReportStore",
    "ReportQueryResult",
    "Subscription",
]
