"""
AEGIS Field Module
Presentation-facing interface: reports, session, sync, positioning.
"""
from .positioning import DEFAULT_POSITION, FixedPositionSource, Position, PositionLocator, PositionSource
from .routes import register_field_routes
from .service import INCIDENT_TYPES, MAX_PHOTO_BYTES, SEVERITY_LABELS, FieldService, encode_photo

__all__ = [
    "DEFAULT_POSITION",
    "FixedPositionSource",
    "Position",
    "PositionLocator",
    "PositionSource",
    "register_field_routes",
    "INCIDENT_TYPES",
    "MAX_PHOTO_BYTES",
    "SEVERITY_LABELS",
    "FieldService",
    "encode_photo",
]
