"""
DealPulse Audit

Append-only, rollback-capable audit trail of state-changing actions.
"""

from .audit_log import AuditLog

__all__ = ["AuditLog"]
