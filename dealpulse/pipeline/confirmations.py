"""
Confirmation Queue

Holds medium-confidence stage changes until a rep confirms or rejects them.

The queue is persisted to ~/.dealpulse/confirmations.json so pending
confirmations survive a restart. Resolved items stay in the file until
``clear_resolved`` is called.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..common.config import CONFIRMATIONS_PATH
from ..common.errors import NotFoundError
from ..common.schemas import StageMappingResult

logger = logging.getLogger("dealpulse.pipeline.confirmations")

PENDING = "pending"
CONFIRMED = "confirmed"
REJECTED = "rejected"


@dataclass
class ConfirmationItem:
    """Stage change awaiting rep confirmation"""
    confirmation_id: str
    call_id: str
    record_id: str
    suggested_stage: str
    confidence: float
    reasoning: str
    created_at: str
    audit_id: Optional[str] = None
    disposition: Optional[str] = None
    flags: List[str] = field(default_factory=list)
    status: str = PENDING  # pending, confirmed, rejected
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    final_stage: Optional[str] = None
    rejection_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confirmation_id": self.confirmation_id,
            "call_id": self.call_id,
            "record_id": self.record_id,
            "suggested_stage": self.suggested_stage,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "created_at": self.created_at,
            "audit_id": self.audit_id,
            "disposition": self.disposition,
            "flags": self.flags,
            "status": self.status,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at,
            "final_stage": self.final_stage,
            "rejection_reason": self.rejection_reason,
        }


class ConfirmationQueue:
    """
    JSON-persisted queue of pending stage confirmations.

    Workflow:
    1. The call pipeline adds medium-confidence mappings
    2. A rep confirms (optionally choosing a different stage) or rejects
    3. The pipeline applies confirmed changes to the CRM
    """

    def __init__(self, queue_path: Optional[Path] = None):
        """
        Initialize confirmation queue.

        Args:
            queue_path: Path to queue file (default: ~/.dealpulse/confirmations.json)
        """
        self._queue_path = Path(queue_path) if queue_path else CONFIRMATIONS_PATH
        self._lock = threading.RLock()
        self._queue: List[ConfirmationItem] = []
        self._load_queue()

    def _load_queue(self) -> None:
        """Load queue from disk"""
        if not self._queue_path.exists():
            self._queue = []
            return

        try:
            with open(self._queue_path) as f:
                data = json.load(f)

            self._queue = [
                ConfirmationItem(
                    confirmation_id=item["confirmation_id"],
                    call_id=item["call_id"],
                    record_id=item["record_id"],
                    suggested_stage=item["suggested_stage"],
                    confidence=item["confidence"],
                    reasoning=item.get("reasoning", ""),
                    created_at=item["created_at"],
                    audit_id=item.get("audit_id"),
                    disposition=item.get("disposition"),
                    flags=item.get("flags", []),
                    status=item.get("status", PENDING),
                    resolved_by=item.get("resolved_by"),
                    resolved_at=item.get("resolved_at"),
                    final_stage=item.get("final_stage"),
                    rejection_reason=item.get("rejection_reason"),
                )
                for item in data
            ]
        except (json.JSONDecodeError, IOError, KeyError) as e:
            logger.warning("Failed to load confirmation queue %s: %s", self._queue_path, e)
            self._queue = []

    def _save_queue(self) -> None:
        """Save queue to disk"""
        self._queue_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._queue_path, "w") as f:
            json.dump([item.to_dict() for item in self._queue], f, indent=2, default=str)

    def add(
        self,
        call_id: str,
        record_id: str,
        mapping: StageMappingResult,
        audit_id: Optional[str] = None,
    ) -> str:
        """
        Queue a mapping for confirmation.

        A pending item for the same call and record is replaced.

        Returns:
            Confirmation ID
        """
        confirmation_id = f"{call_id}-{record_id}"
        item = ConfirmationItem(
            confirmation_id=confirmation_id,
            call_id=call_id,
            record_id=record_id,
            suggested_stage=mapping.new_stage.value,
            confidence=mapping.confidence,
            reasoning=mapping.reasoning,
            created_at=datetime.now(timezone.utc).isoformat(),
            audit_id=audit_id,
            disposition=mapping.disposition.value if mapping.disposition else None,
            flags=list(mapping.flags),
        )

        with self._lock:
            self._queue = [i for i in self._queue if i.confirmation_id != confirmation_id]
            self._queue.append(item)
            self._save_queue()

        logger.info(
            "Queued %s for confirmation (%s, confidence %.2f)",
            confirmation_id, mapping.new_stage.value, mapping.confidence,
        )
        return confirmation_id

    def get_pending(self) -> List[ConfirmationItem]:
        """Pending items, newest first"""
        with self._lock:
            pending = [item for item in self._queue if item.status == PENDING]
        return sorted(pending, key=lambda i: i.created_at, reverse=True)

    def get_item(self, confirmation_id: str) -> Optional[ConfirmationItem]:
        with self._lock:
            for item in self._queue:
                if item.confirmation_id == confirmation_id:
                    return item
        return None

    def get_pending_item(self, confirmation_id: str) -> ConfirmationItem:
        """
        Raises:
            NotFoundError: if there is no pending item with this id
        """
        item = self.get_item(confirmation_id)
        if item is None or item.status != PENDING:
            raise NotFoundError(f"Pending confirmation not found: {confirmation_id}")
        return item

    def confirm(
        self,
        confirmation_id: str,
        confirmed_by: str,
        final_stage: Optional[str] = None,
    ) -> ConfirmationItem:
        """Mark a pending item confirmed"""
        with self._lock:
            item = self.get_pending_item(confirmation_id)
            item.status = CONFIRMED
            item.resolved_by = confirmed_by
            item.resolved_at = datetime.now(timezone.utc).isoformat()
            item.final_stage = final_stage or item.suggested_stage
            self._save_queue()

        logger.info("Confirmation %s confirmed by %s (%s)", confirmation_id, confirmed_by, item.final_stage)
        return item

    def reject(
        self,
        confirmation_id: str,
        rejected_by: str,
        reason: Optional[str] = None,
    ) -> ConfirmationItem:
        """Mark a pending item rejected"""
        with self._lock:
            item = self.get_pending_item(confirmation_id)
            item.status = REJECTED
            item.resolved_by = rejected_by
            item.resolved_at = datetime.now(timezone.utc).isoformat()
            item.rejection_reason = reason
            self._save_queue()

        logger.info("Confirmation %s rejected by %s", confirmation_id, rejected_by)
        return item

    def remove(self, confirmation_id: str) -> bool:
        """Remove an item from the queue"""
        with self._lock:
            for i, item in enumerate(self._queue):
                if item.confirmation_id == confirmation_id:
                    del self._queue[i]
                    self._save_queue()
                    return True
        return False

    def clear_resolved(self) -> int:
        """Drop confirmed and rejected items"""
        with self._lock:
            original_len = len(self._queue)
            self._queue = [item for item in self._queue if item.status == PENDING]
            self._save_queue()
            return original_len - len(self._queue)

    def get_stats(self) -> Dict[str, int]:
        stats = {
            "total": 0,
            PENDING: 0,
            CONFIRMED: 0,
            REJECTED: 0,
        }
        with self._lock:
            stats["total"] = len(self._queue)
            for item in self._queue:
                if item.status in stats:
                    stats[item.status] += 1
        return stats

    def format_for_review(self, item: ConfirmationItem) -> str:
        """Format a confirmation item for display"""
        lines = [
            "=" * 60,
            f"CONFIRMATION: {item.confirmation_id}",
            f"Confidence: {item.confidence:.2f}",
            f"Created: {item.created_at}",
            "=" * 60,
            "",
            f"Call: {item.call_id}",
            f"Record: {item.record_id}",
            f"Suggested Stage: {item.suggested_stage}",
            f"Disposition: {item.disposition or 'N/A'}",
            "",
            "Reasoning:",
            f"  {item.reasoning[:300]}",
        ]

        if item.flags:
            lines.extend(["", f"Flags: {', '.join(item.flags)}"])

        lines.extend([
            "",
            "-" * 60,
            f"Status: {item.status}",
        ])
        if item.resolved_by:
            lines.append(f"Resolved by {item.resolved_by} at {item.resolved_at}")

        lines.append("=" * 60)

        return "\n".join(lines)
