"""
DealPulse Common Module

Shared configuration, errors, storage and schemas.
"""

from .config import DealPulseConfig, load_config
from .errors import (
    parse_document,
    DealPulseError,
    ValidationError,
    NotFoundError,
    NotRollbackableError,
    DeliveryError,
    DownstreamUnavailable,
    AuditWriteError,
)
from .repository import (
    InMemorySignalRepository,
    InMemoryStatusRepository,
    InMemoryAuditStore,
    InMemoryAlertStore,
)

__all__ = [
    "DealPulseConfig",
    "load_config",
    "DealPulseError",
    "ValidationError",
    "NotFoundError",
    "NotRollbackableError",
    "DeliveryError",
    "DownstreamUnavailable",
    "AuditWriteError",
    "parse_document",
    "InMemorySignalRepository",
    "InMemoryStatusRepository",
    "InMemoryAuditStore",
    "InMemoryAlertStore",
]
