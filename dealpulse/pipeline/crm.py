"""
CRM Adapter

Narrow record lookup/update contract the pipeline drives, with an httpx
REST implementation and an in-memory one for local runs and tests.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..common.config import CrmConfig
from ..common.errors import DownstreamUnavailable
from ..common.schemas import CallLog, CrmRecord, RecordUpdate, RecordUpdateResult

logger = logging.getLogger("dealpulse.pipeline.crm")


class CrmAdapter(ABC):
    """
    Record store the pipeline reads from and applies stage changes to.

    Implementations raise ``DownstreamUnavailable`` when the store cannot be
    reached, and report rejected updates as ``success=False`` results.
    """

    @abstractmethod
    def find_record_by_email(self, email: str) -> Optional[CrmRecord]:
        pass

    @abstractmethod
    def get_record(self, record_id: str) -> Optional[CrmRecord]:
        pass

    @abstractmethod
    def update_record(self, record_id: str, update: RecordUpdate) -> RecordUpdateResult:
        pass

    @abstractmethod
    def log_call(self, record_id: str, call: CallLog) -> bool:
        pass

    def create_task(self, record_id: str, task: str) -> RecordUpdateResult:
        return self.update_record(record_id, RecordUpdate(task=task))


class HttpCrmAdapter(CrmAdapter):
    """
    JSON REST client.

    Endpoints (relative to ``base_url``):
        GET   /records?email=...      -> {"data": [record, ...]}
        GET   /records/{id}           -> {"data": record}
        PATCH /records/{id}           stage / disposition
        POST  /records/{id}/notes     {"body": ...}
        POST  /records/{id}/tasks     {"subject": ...}
        POST  /records/{id}/calls     CallLog
    """

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout),
        )

    @classmethod
    def from_config(cls, config: CrmConfig) -> "HttpCrmAdapter":
        return cls(config.base_url, config.api_token, config.timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise DownstreamUnavailable(f"CRM unreachable ({method} {path}): {e}") from e

    @staticmethod
    def _to_record(data: Dict[str, Any]) -> CrmRecord:
        return CrmRecord.model_validate(data)

    def find_record_by_email(self, email: str) -> Optional[CrmRecord]:
        response = self._request("GET", "/records", params={"email": email})
        if response.status_code >= 400:
            raise DownstreamUnavailable(
                f"CRM lookup for {email} failed with HTTP {response.status_code}"
            )

        records = response.json().get("data") or []
        if not records:
            logger.debug("No CRM record for %s", email)
            return None
        return self._to_record(records[0])

    def get_record(self, record_id: str) -> Optional[CrmRecord]:
        response = self._request("GET", f"/records/{record_id}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise DownstreamUnavailable(
                f"CRM fetch of {record_id} failed with HTTP {response.status_code}"
            )
        return self._to_record(response.json()["data"])

    def update_record(self, record_id: str, update: RecordUpdate) -> RecordUpdateResult:
        current = self.get_record(record_id)
        if current is None:
            return RecordUpdateResult(success=False, error=f"Record not found: {record_id}")

        try:
            fields = update.model_dump(mode="json", include={"stage", "disposition"}, exclude_none=True)
            if fields:
                self._request("PATCH", f"/records/{record_id}", json=fields).raise_for_status()
            if update.note:
                self._request("POST", f"/records/{record_id}/notes", json={"body": update.note}).raise_for_status()
            if update.task:
                self._request("POST", f"/records/{record_id}/tasks", json={"subject": update.task}).raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("CRM update of %s rejected: %s", record_id, e)
            return RecordUpdateResult(success=False, previous_stage=current.stage, error=str(e))

        logger.info(
            "CRM record %s updated (stage %s -> %s)",
            record_id,
            current.stage.value if current.stage else None,
            update.stage.value if update.stage else None,
        )
        return RecordUpdateResult(success=True, previous_stage=current.stage)

    def log_call(self, record_id: str, call: CallLog) -> bool:
        response = self._request("POST", f"/records/{record_id}/calls", json=call.model_dump(mode="json"))
        if response.status_code >= 400:
            logger.warning("Failed to log call on %s: HTTP %d", record_id, response.status_code)
            return False
        return True


class InMemoryCrmAdapter(CrmAdapter):
    """Dict-backed record store; keeps applied notes, tasks and calls for inspection"""

    def __init__(self, records: Optional[List[CrmRecord]] = None):
        self._lock = threading.RLock()
        self._records: Dict[str, CrmRecord] = {r.id: r for r in records or []}
        self.notes: Dict[str, List[str]] = {}
        self.tasks: Dict[str, List[str]] = {}
        self.calls: Dict[str, List[CallLog]] = {}

    def add_record(self, record: CrmRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def find_record_by_email(self, email: str) -> Optional[CrmRecord]:
        with self._lock:
            for record in self._records.values():
                if record.email and record.email.lower() == email.lower():
                    return record
        return None

    def get_record(self, record_id: str) -> Optional[CrmRecord]:
        with self._lock:
            return self._records.get(record_id)

    def update_record(self, record_id: str, update: RecordUpdate) -> RecordUpdateResult:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return RecordUpdateResult(success=False, error=f"Record not found: {record_id}")

            previous = record.stage
            if update.stage is not None:
                self._records[record_id] = record.model_copy(update={"stage": update.stage})
            if update.note:
                self.notes.setdefault(record_id, []).append(update.note)
            if update.task:
                self.tasks.setdefault(record_id, []).append(update.task)

        return RecordUpdateResult(success=True, previous_stage=previous)

    def log_call(self, record_id: str, call: CallLog) -> bool:
        with self._lock:
            if record_id not in self._records:
                return False
            self.calls.setdefault(record_id, []).append(call)
        return True


def build_crm_adapter(config: CrmConfig) -> CrmAdapter:
    """REST adapter when a base URL is configured, otherwise in-memory"""
    if config.base_url:
        return HttpCrmAdapter.from_config(config)
    logger.warning("No CRM base_url configured, using in-memory record store")
    return InMemoryCrmAdapter()
