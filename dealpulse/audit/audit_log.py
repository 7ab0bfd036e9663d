"""
Audit Log

Append-only record of every state-changing action, indexed by originating
call and by target CRM record.

Rules:
1. Entries are never edited; a rollback is a new ROLLBACK entry that
   references the original through ``rollback_of``
2. Only STAGE_CHANGE and DISPOSITION_SET entries can be rolled back
3. Every entry goes through ``append`` so both indexes stay consistent,
   including entries restored by ``import_from_file``
4. Cleanup never removes an entry a retained ROLLBACK still points at
"""

import json
import uuid
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..common.config import AuditConfig
from ..common.errors import (
    AuditWriteError,
    NotFoundError,
    NotRollbackableError,
    ValidationError,
    parse_document,
)
from ..common.repository import AuditStore, InMemoryAuditStore
from ..common.schemas import (
    ROLLBACK_ELIGIBLE_ACTIONS,
    AuditAction,
    AuditEntry,
    AuditStats,
    Disposition,
    PipelineStage,
    RollbackResult,
    StageMappingResult,
    utcnow,
)

logger = logging.getLogger("dealpulse.audit.audit_log")

NOTE_MAX_CHARS = 500


def _value(v: Any) -> Any:
    """Store enum members by value so entries serialize cleanly"""
    return getattr(v, "value", v)


class AuditLog:
    """
    Audit trail over an injected ``AuditStore``.

    With ``log_path`` configured every entry is mirrored as one JSON line.
    Mirror failures are logged and the entry is still kept in the store,
    unless ``fail_closed`` is set, in which case ``AuditWriteError`` is
    raised and nothing is stored.
    """

    def __init__(self, config: Optional[AuditConfig] = None, store: Optional[AuditStore] = None):
        self._config = config or AuditConfig()
        self._store = store or InMemoryAuditStore()
        self._log_path = Path(self._config.log_path).expanduser() if self._config.log_path else None
        logger.info(
            "AuditLog initialized (retention=%dd, rollback=%s, mirror=%s)",
            self._config.retention_days, self._config.enable_rollback, self._log_path or "off",
        )

    @property
    def config(self) -> AuditConfig:
        return self._config

    @property
    def store(self) -> AuditStore:
        return self._store

    # =========================================================================
    # Append path
    # =========================================================================

    def append(self, entry: AuditEntry) -> str:
        """Record one entry and index it. Returns the entry id."""
        with self._store.lock:
            if self._store.get(entry.id) is not None:
                raise ValidationError(f"Duplicate audit entry id: {entry.id}")
            if entry.action == AuditAction.ROLLBACK:
                self._check_rollback_reference(entry)

            self._mirror(entry)
            self._store.append(entry)

        logger.debug("Audit entry %s: %s for call %s", entry.id, entry.action.value, entry.call_id)
        return entry.id

    def _check_rollback_reference(self, entry: AuditEntry) -> None:
        original = self._store.get(entry.rollback_of) if entry.rollback_of else None
        if original is None:
            raise ValidationError(
                f"Rollback entry {entry.id} references unknown entry {entry.rollback_of}"
            )
        if original.action not in ROLLBACK_ELIGIBLE_ACTIONS:
            raise ValidationError(
                f"Rollback entry {entry.id} references ineligible {original.action.value} entry"
            )

    def _mirror(self, entry: AuditEntry) -> None:
        if not self._log_path:
            return
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            if self._config.fail_closed:
                raise AuditWriteError(f"Failed to persist audit entry {entry.id}: {e}") from e
            logger.warning("Failed to write audit entry %s to %s: %s", entry.id, self._log_path, e)

    def _record(
        self,
        call_id: str,
        record_id: Optional[str],
        action: AuditAction,
        automated: bool,
        previous_value: Any = None,
        new_value: Any = None,
        confidence: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
        confirmed_by: Optional[str] = None,
        rollback_of: Optional[str] = None,
    ) -> str:
        return self.append(AuditEntry(
            id=str(uuid.uuid4()),
            call_id=call_id,
            record_id=record_id,
            action=action,
            previous_value=_value(previous_value),
            new_value=_value(new_value),
            confidence=confidence,
            automated=automated,
            confirmed_by=confirmed_by,
            rollback_of=rollback_of,
            metadata=metadata or {},
        ))

    # =========================================================================
    # Typed loggers
    # =========================================================================

    def log_stage_change(
        self,
        call_id: str,
        record_id: Optional[str],
        previous_stage: Optional[PipelineStage],
        new_stage: PipelineStage,
        confidence: Optional[float],
        automated: bool,
        metadata: Optional[Dict[str, Any]] = None,
        confirmed_by: Optional[str] = None,
    ) -> str:
        return self._record(
            call_id, record_id, AuditAction.STAGE_CHANGE, automated,
            previous_value=previous_stage, new_value=new_stage,
            confidence=confidence, metadata=metadata, confirmed_by=confirmed_by,
        )

    def log_disposition_set(
        self,
        call_id: str,
        record_id: Optional[str],
        disposition: Disposition,
        automated: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self._record(
            call_id, record_id, AuditAction.DISPOSITION_SET, automated,
            new_value=disposition, metadata=metadata,
        )

    def log_note_added(self, call_id: str, record_id: Optional[str], note: str, automated: bool) -> str:
        return self._record(
            call_id, record_id, AuditAction.NOTE_ADDED, automated,
            new_value=note[:NOTE_MAX_CHARS],
        )

    def log_task_created(self, call_id: str, record_id: Optional[str], task: str, automated: bool) -> str:
        return self._record(call_id, record_id, AuditAction.TASK_CREATED, automated, new_value=task)

    def log_flag_set(self, call_id: str, record_id: Optional[str], flag: str, reason: str) -> str:
        return self._record(
            call_id, record_id, AuditAction.FLAG_SET, True,
            new_value=flag, metadata={"reason": reason},
        )

    def log_confirmation_required(
        self,
        call_id: str,
        record_id: Optional[str],
        suggested_stage: PipelineStage,
        confidence: float,
        reasoning: str,
    ) -> str:
        return self._record(
            call_id, record_id, AuditAction.CONFIRMATION_REQUIRED, True,
            new_value=suggested_stage, confidence=confidence,
            metadata={"reasoning": reasoning},
        )

    def log_error(
        self,
        call_id: str,
        error: str,
        record_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self._record(
            call_id, record_id, AuditAction.ERROR, True,
            new_value=error, metadata=context,
        )

    def log_stage_mapping_result(
        self,
        call_id: str,
        record_id: Optional[str],
        result: StageMappingResult,
        auto_updated: bool,
        previous_stage: Optional[PipelineStage] = None,
        apply_error: Optional[str] = None,
    ) -> List[str]:
        """
        Record everything a stage mapping implies.

        Writes the stage change, the disposition (if any), one FLAG_SET per
        flag, and CONFIRMATION_REQUIRED when the change was not applied
        automatically. A failed apply is noted in the stage change metadata
        and as an ERROR entry.

        Returns:
            Ids of the entries written, stage change first
        """
        metadata = {
            "reasoning": result.reasoning,
            "flags": list(result.flags),
            "suggested_tasks": list(result.suggested_tasks),
        }
        if result.matched_rule:
            metadata["matched_rule"] = result.matched_rule
        if apply_error:
            metadata["apply_error"] = apply_error

        ids = [self.log_stage_change(
            call_id, record_id, previous_stage, result.new_stage,
            result.confidence, auto_updated, metadata=metadata,
        )]

        if result.disposition:
            ids.append(self.log_disposition_set(call_id, record_id, result.disposition, auto_updated))

        for flag in result.flags:
            ids.append(self.log_flag_set(call_id, record_id, flag, result.reasoning))

        if result.requires_confirmation and not auto_updated:
            ids.append(self.log_confirmation_required(
                call_id, record_id, result.new_stage, result.confidence, result.reasoning,
            ))

        if apply_error:
            ids.append(self.log_error(
                call_id, apply_error, record_id=record_id,
                context={"attempted_stage": result.new_stage.value},
            ))

        return ids

    # =========================================================================
    # Rollback
    # =========================================================================

    def rollback(self, entry_id: str, actor: str) -> RollbackResult:
        """
        Record a rollback of ``entry_id``.

        The log does not touch external systems: the caller re-applies
        ``restored_value`` to the record.

        Raises:
            NotRollbackableError: if rollback is disabled or the action is ineligible
            NotFoundError: if the entry does not exist
        """
        if not self._config.enable_rollback:
            raise NotRollbackableError("Rollback is disabled in configuration")

        with self._store.lock:
            original = self._store.get(entry_id)
            if original is None:
                raise NotFoundError(f"Audit entry not found: {entry_id}")
            if original.action not in ROLLBACK_ELIGIBLE_ACTIONS:
                raise NotRollbackableError(f"Cannot rollback action type: {original.action.value}")

            rollback_id = self._record(
                original.call_id, original.record_id, AuditAction.ROLLBACK, False,
                previous_value=original.new_value, new_value=original.previous_value,
                confirmed_by=actor, rollback_of=entry_id,
                metadata={"original_action": original.action.value},
            )

        logger.info("Rollback %s of entry %s recorded by %s", rollback_id, entry_id, actor)
        return RollbackResult(
            success=True,
            original_audit_id=entry_id,
            audit_id=rollback_id,
            previous_value=original.new_value,
            restored_value=original.previous_value,
        )

    def get_rollback_history(self, entry_id: str) -> List[AuditEntry]:
        """The entry and all rollbacks of it, oldest first"""
        history = [
            e for e in self._store.all()
            if e.id == entry_id or e.rollback_of == entry_id
        ]
        return sorted(history, key=lambda e: e.timestamp)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_entry(self, entry_id: str) -> Optional[AuditEntry]:
        return self._store.get(entry_id)

    def _resolve(self, ids: Iterable[str]) -> List[AuditEntry]:
        entries = (self._store.get(i) for i in ids)
        return [e for e in entries if e is not None]

    def get_entries_for_call(self, call_id: str) -> List[AuditEntry]:
        """In insertion order"""
        return self._resolve(self._store.ids_for_call(call_id))

    def get_entries_for_record(self, record_id: str) -> List[AuditEntry]:
        """In insertion order"""
        return self._resolve(self._store.ids_for_record(record_id))

    def get_entries_by_action(self, action: AuditAction) -> List[AuditEntry]:
        """Newest first"""
        entries = [e for e in self._store.all() if e.action == action]
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    def get_entries_in_range(self, start: datetime, end: datetime) -> List[AuditEntry]:
        """Entries with start <= timestamp <= end, newest first"""
        entries = [e for e in self._store.all() if start <= e.timestamp <= end]
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    def get_recent_entries(self, limit: int = 100) -> List[AuditEntry]:
        entries = sorted(self._store.all(), key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def get_pending_confirmations(self) -> List[AuditEntry]:
        return self.get_entries_by_action(AuditAction.CONFIRMATION_REQUIRED)

    def get_stats(self) -> AuditStats:
        entries = self._store.all()
        by_action: Dict[str, int] = {}
        automated = 0
        for entry in entries:
            by_action[entry.action.value] = by_action.get(entry.action.value, 0) + 1
            if entry.automated:
                automated += 1

        timestamps = [e.timestamp for e in entries]
        return AuditStats(
            total_entries=len(entries),
            entries_by_action=by_action,
            automated=automated,
            manual=len(entries) - automated,
            rollback_count=by_action.get(AuditAction.ROLLBACK.value, 0),
            error_count=by_action.get(AuditAction.ERROR.value, 0),
            oldest_entry=min(timestamps) if timestamps else None,
            newest_entry=max(timestamps) if timestamps else None,
        )

    # =========================================================================
    # Retention
    # =========================================================================

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """
        Remove entries older than the retention window from the store and
        both indexes. Returns the number removed.
        """
        cutoff = (now or utcnow()) - timedelta(days=self._config.retention_days)

        with self._store.lock:
            entries = self._store.all()
            expired = {e.id for e in entries if e.timestamp < cutoff}
            pinned = {
                e.rollback_of for e in entries
                if e.action == AuditAction.ROLLBACK and e.id not in expired
            }
            removed = self._store.remove(expired - pinned)

        if removed:
            logger.info("Audit cleanup removed %d entries (retention %d days)", removed, self._config.retention_days)
        return removed

    # =========================================================================
    # Export / import
    # =========================================================================

    def export_entries(self) -> List[Dict[str, Any]]:
        """All entries as JSON-ready dicts, in insertion order"""
        return [e.model_dump(mode="json") for e in self._store.all()]

    def export_to_json(self) -> str:
        return json.dumps(self.export_entries(), indent=2)

    def export_to_file(self, file_path: Path) -> int:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        entries = self.export_entries()
        with open(path, "w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2)
        logger.info("Exported %d audit entries to %s", len(entries), path)
        return len(entries)

    def import_entries(self, data: List[Dict[str, Any]]) -> int:
        """
        Replay exported entries through ``append``, in order.

        The whole batch is validated first, so a bad batch imports nothing.

        Raises:
            ValidationError: on malformed entries, duplicate ids or broken
                rollback references
        """
        if not isinstance(data, list):
            raise ValidationError("Audit import must be a list of entries")

        entries = [parse_document(AuditEntry, item) for item in data]

        with self._store.lock:
            known = {e.id: e.action for e in self._store.all()}
            for entry in entries:
                if entry.id in known:
                    raise ValidationError(f"Duplicate audit entry id: {entry.id}")
                if entry.action == AuditAction.ROLLBACK:
                    target = known.get(entry.rollback_of)
                    if target is None or target not in ROLLBACK_ELIGIBLE_ACTIONS:
                        raise ValidationError(
                            f"Rollback entry {entry.id} has no eligible prior entry {entry.rollback_of}"
                        )
                known[entry.id] = entry.action

            for entry in entries:
                self.append(entry)

        return len(entries)

    def import_from_file(self, file_path: Path) -> int:
        path = Path(file_path)
        if not path.exists():
            raise NotFoundError(f"Audit export not found: {file_path}")

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Audit export {file_path} is not valid JSON: {e}") from e

        count = self.import_entries(data)
        logger.info("Imported %d audit entries from %s", count, path)
        return count
