"""
Call Pipeline

Orchestrates one call webhook end to end:

1. Extract call signals from the structured transcript
2. Map signals to a stage with the rule engine
3. Route by confidence (auto-update / confirm / no action)
4. Look up the prospect's CRM record and check the transition
5. Apply, queue for confirmation, or only record
6. Audit every attempted change, including failed applies

Every public method returns a tagged result; internal faults never escape.
"""

import logging
from typing import Optional

from ..audit import AuditLog
from ..common.errors import (
    AuditWriteError,
    DealPulseError,
    DownstreamUnavailable,
    NotFoundError,
    NotRollbackableError,
    ValidationError,
    parse_document,
)
from ..common.schemas import (
    AuditAction,
    CallLog,
    CallWebhookPayload,
    ConfirmationResult,
    PipelineStage,
    RecordUpdate,
    RollbackResult,
    RoutingAction,
    StageMappingResult,
    StructuredTranscript,
    WebhookResponse,
    render_call_note,
)
from ..detector import CallSignalExtractor
from ..engine import StageEngine
from .confirmations import ConfirmationQueue
from .crm import CrmAdapter
from .handlers import PROCESSED_EVENTS

logger = logging.getLogger("dealpulse.pipeline.call_pipeline")

INVALID_TRANSITION_FLAG = "invalid_transition"


class CallPipeline:
    """Call webhook orchestration over the engine, audit log and CRM"""

    def __init__(
        self,
        engine: StageEngine,
        audit_log: AuditLog,
        crm: CrmAdapter,
        confirmations: ConfirmationQueue,
        extractor: Optional[CallSignalExtractor] = None,
    ):
        self.engine = engine
        self.audit_log = audit_log
        self.crm = crm
        self.confirmations = confirmations
        self.extractor = extractor or CallSignalExtractor()

    # -------------------------------------------------------------------------
    # Webhook processing
    # -------------------------------------------------------------------------

    def process_call(self, payload) -> WebhookResponse:
        """
        Process a call webhook payload.

        Args:
            payload: CallWebhookPayload or an equivalent dict
        """
        try:
            payload = parse_document(CallWebhookPayload, payload)
        except ValidationError as e:
            logger.warning("Rejected call webhook: %s", e)
            return WebhookResponse(success=False, call_id="unknown", processed=False, error=str(e))

        call_id = payload.data.call_id
        logger.info("Call webhook %s received for %s", payload.event, call_id)

        if payload.event not in PROCESSED_EVENTS:
            return WebhookResponse(
                success=True,
                call_id=call_id,
                processed=False,
                error=f"Event type {payload.event} not processed",
            )

        try:
            return self._process(payload.data)
        except DealPulseError as e:
            logger.error("Error processing call %s: %s", call_id, e)
            if not isinstance(e, AuditWriteError):
                self._audit_error(call_id, str(e), None, {"step": "process_call"})
            return WebhookResponse(success=False, call_id=call_id, processed=False, error=str(e))

    def _process(self, transcript: StructuredTranscript) -> WebhookResponse:
        call_id = transcript.call_id
        call_data = self.extractor.extract_call_data(transcript)
        mapping = self.engine.map_to_stage(call_data)
        action = self.engine.router.decide(mapping.confidence).action

        prospect = transcript.participant_with_role("prospect")
        if prospect is None or not prospect.email:
            logger.warning("No prospect email found in call %s", call_id)
            return WebhookResponse(
                success=True, call_id=call_id, processed=False,
                stage_update=mapping, error="No prospect email found",
            )

        try:
            record = self.crm.find_record_by_email(prospect.email)
        except DownstreamUnavailable as e:
            logger.error("CRM lookup failed for call %s: %s", call_id, e)
            ids = self.audit_log.log_stage_mapping_result(
                call_id, None, mapping, auto_updated=False, apply_error=str(e),
            )
            return WebhookResponse(
                success=False, call_id=call_id, processed=False, action=action,
                stage_update=mapping, audit_id=ids[0], error=str(e),
            )

        if record is None:
            logger.warning("No CRM record for %s (call %s)", prospect.email, call_id)
            return WebhookResponse(
                success=True, call_id=call_id, processed=False,
                stage_update=mapping, error=f"No CRM record found for {prospect.email}",
            )

        if record.stage is not None and not self.engine.is_valid_transition(record.stage, mapping.new_stage):
            logger.warning(
                "Call %s: transition %s -> %s is not allowed, requiring confirmation",
                call_id, record.stage.value, mapping.new_stage.value,
            )
            mapping = mapping.model_copy(update={
                "flags": mapping.flags + [INVALID_TRANSITION_FLAG],
                "requires_confirmation": True,
            })
            if action == RoutingAction.AUTO_UPDATE:
                action = RoutingAction.FLAG_FOR_CONFIRMATION

        if action == RoutingAction.AUTO_UPDATE:
            return self._auto_update(transcript, call_data, mapping, record)
        if action == RoutingAction.FLAG_FOR_CONFIRMATION:
            return self._flag_for_confirmation(transcript, mapping, record)

        logger.info("Call %s: low confidence (%.2f), recording only", call_id, mapping.confidence)
        ids = self.audit_log.log_stage_mapping_result(
            call_id, record.id, mapping, auto_updated=False, previous_stage=record.stage,
        )
        return WebhookResponse(
            success=True, call_id=call_id, processed=True, action=action,
            stage_update=mapping, audit_id=ids[0],
        )

    def _auto_update(self, transcript, call_data, mapping: StageMappingResult, record) -> WebhookResponse:
        call_id = transcript.call_id
        note = render_call_note(transcript, call_data, mapping)
        logger.info("Auto-updating %s to %s (call %s)", record.id, mapping.new_stage.value, call_id)

        previous_stage = record.stage
        apply_error = None
        try:
            result = self.crm.update_record(record.id, RecordUpdate(
                stage=mapping.new_stage,
                disposition=mapping.disposition,
                note=note,
            ))
            if result.success:
                previous_stage = result.previous_stage or previous_stage
            else:
                apply_error = result.error or "CRM update failed"
        except DownstreamUnavailable as e:
            apply_error = str(e)

        applied = apply_error is None
        ids = self.audit_log.log_stage_mapping_result(
            call_id, record.id, mapping, auto_updated=applied,
            previous_stage=previous_stage, apply_error=apply_error,
        )

        if applied:
            self.audit_log.log_note_added(call_id, record.id, note, automated=True)
            self._log_call(transcript, record.id, mapping.disposition.value if mapping.disposition else "Connected")
        else:
            logger.error("Auto-update of %s failed for call %s: %s", record.id, call_id, apply_error)

        return WebhookResponse(
            success=applied, call_id=call_id, processed=True,
            action=RoutingAction.AUTO_UPDATE, stage_update=mapping,
            audit_id=ids[0], error=apply_error,
        )

    def _flag_for_confirmation(self, transcript, mapping: StageMappingResult, record) -> WebhookResponse:
        call_id = transcript.call_id
        logger.info("Flagging call %s for confirmation (%.2f)", call_id, mapping.confidence)

        ids = self.audit_log.log_stage_mapping_result(
            call_id, record.id, mapping, auto_updated=False, previous_stage=record.stage,
        )
        confirmation_id = self.confirmations.add(call_id, record.id, mapping, audit_id=ids[0])
        self._log_call(transcript, record.id, "Connected - Pending Review")

        return WebhookResponse(
            success=True, call_id=call_id, processed=True,
            action=RoutingAction.FLAG_FOR_CONFIRMATION, stage_update=mapping,
            audit_id=ids[0], confirmation_id=confirmation_id,
        )

    def _log_call(self, transcript: StructuredTranscript, record_id: str, outcome: str) -> None:
        call = CallLog(
            direction="inbound" if transcript.call_type == "inbound" else "outbound",
            outcome=outcome,
            duration=transcript.duration,
            notes=self.extractor.transcript_summary(transcript),
            external_call_id=transcript.external_call_id or transcript.call_id,
        )
        try:
            if not self.crm.log_call(record_id, call):
                logger.warning("CRM did not accept call log for %s", record_id)
        except DownstreamUnavailable as e:
            logger.warning("Could not log call %s on %s: %s", transcript.call_id, record_id, e)

    def _audit_error(self, call_id: str, error: str, record_id: Optional[str], context: dict) -> None:
        try:
            self.audit_log.log_error(call_id, error, record_id=record_id, context=context)
        except AuditWriteError as e:
            logger.error("Could not audit error for call %s: %s", call_id, e)

    # -------------------------------------------------------------------------
    # Confirmations
    # -------------------------------------------------------------------------

    def confirm(
        self,
        confirmation_id: str,
        confirmed_by: str,
        modified_stage: Optional[str] = None,
    ) -> ConfirmationResult:
        """Apply a pending stage change, optionally with a rep-chosen stage"""
        try:
            item = self.confirmations.get_pending_item(confirmation_id)
        except NotFoundError as e:
            return ConfirmationResult(success=False, confirmation_id=confirmation_id, error=str(e), error_code="not_found")

        try:
            final_stage = PipelineStage(modified_stage or item.suggested_stage)
        except ValueError:
            return ConfirmationResult(
                success=False, confirmation_id=confirmation_id, record_id=item.record_id,
                error=f"Unknown stage: {modified_stage}", error_code="validation",
            )

        try:
            result = self.crm.update_record(item.record_id, RecordUpdate(stage=final_stage))
        except DownstreamUnavailable as e:
            logger.error("Confirmation %s not applied: %s", confirmation_id, e)
            return ConfirmationResult(
                success=False, confirmation_id=confirmation_id, record_id=item.record_id,
                error=str(e), error_code="downstream",
            )

        if not result.success:
            return ConfirmationResult(
                success=False, confirmation_id=confirmation_id, record_id=item.record_id,
                error=result.error or "CRM update failed", error_code="downstream",
            )

        try:
            audit_id = self.audit_log.log_stage_change(
                item.call_id, item.record_id, result.previous_stage, final_stage,
                item.confidence, automated=False, confirmed_by=confirmed_by,
                metadata={
                    "confirmation_id": confirmation_id,
                    "original_suggested_stage": item.suggested_stage,
                    "modified_by_rep": bool(modified_stage),
                },
            )
        except AuditWriteError as e:
            return ConfirmationResult(
                success=False, confirmation_id=confirmation_id, record_id=item.record_id,
                new_stage=final_stage, error=str(e),
            )

        self.confirmations.confirm(confirmation_id, confirmed_by, final_stage.value)
        return ConfirmationResult(
            success=True, confirmation_id=confirmation_id, record_id=item.record_id,
            new_stage=final_stage, audit_id=audit_id,
        )

    def reject(self, confirmation_id: str, rejected_by: str, reason: Optional[str] = None) -> ConfirmationResult:
        try:
            item = self.confirmations.get_pending_item(confirmation_id)
            audit_id = self.audit_log.log_flag_set(
                item.call_id, item.record_id, "stage_change_rejected",
                reason or f"Rejected by {rejected_by}",
            )
            self.confirmations.reject(confirmation_id, rejected_by, reason)
        except NotFoundError as e:
            return ConfirmationResult(success=False, confirmation_id=confirmation_id, error=str(e), error_code="not_found")
        except AuditWriteError as e:
            return ConfirmationResult(success=False, confirmation_id=confirmation_id, error=str(e))

        return ConfirmationResult(
            success=True, confirmation_id=confirmation_id, record_id=item.record_id, audit_id=audit_id,
        )

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def rollback(self, entry_id: str, actor: str) -> RollbackResult:
        """
        Roll back an audited change and re-apply the restored stage.

        The rollback entry is recorded even if the CRM cannot be updated;
        ``applied`` reports whether the record was actually reverted.
        """
        try:
            result = self.audit_log.rollback(entry_id, actor)
        except NotFoundError as e:
            return RollbackResult(success=False, original_audit_id=entry_id, error=str(e), error_code="not_found")
        except NotRollbackableError as e:
            return RollbackResult(success=False, original_audit_id=entry_id, error=str(e), error_code="not_rollbackable")
        except AuditWriteError as e:
            return RollbackResult(success=False, original_audit_id=entry_id, error=str(e))

        original = self.audit_log.get_entry(entry_id)
        if original is None or original.action != AuditAction.STAGE_CHANGE:
            return result
        if not original.record_id or not result.restored_value:
            return result

        apply_error = None
        try:
            update = self.crm.update_record(
                original.record_id, RecordUpdate(stage=PipelineStage(result.restored_value)),
            )
            if not update.success:
                apply_error = update.error or "CRM update failed"
        except DownstreamUnavailable as e:
            apply_error = str(e)

        if apply_error:
            logger.error("Rollback %s recorded but not applied: %s", result.audit_id, apply_error)
            self._audit_error(
                original.call_id, apply_error, original.record_id,
                {"step": "rollback", "rollback_audit_id": result.audit_id},
            )
            return result.model_copy(update={"error": apply_error, "error_code": "downstream"})

        return result.model_copy(update={"applied": True})
