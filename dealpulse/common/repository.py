"""
Repositories

Storage interfaces injected into the engines, with thread-safe in-memory
backends. Each store owns one re-entrant lock; services hold it across
compound check-then-write operations so they stay atomic per store.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from .schemas import AuditEntry, StallAlert, StallSignal, StallStatus


class _LockedStore:
    def __init__(self):
        self.lock = threading.RLock()


# =============================================================================
# Interfaces
# =============================================================================

class SignalRepository(ABC, _LockedStore):
    """Stall signals; never deleted, only excluded from scoring by age"""

    @abstractmethod
    def save(self, signal: StallSignal) -> None:
        pass

    @abstractmethod
    def get(self, signal_id: str) -> Optional[StallSignal]:
        pass

    @abstractmethod
    def list_for_deal(self, deal_id: str) -> List[StallSignal]:
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class StatusRepository(ABC, _LockedStore):
    """Deal stall statuses, last write wins per deal id"""

    @abstractmethod
    def save(self, status: StallStatus) -> None:
        pass

    @abstractmethod
    def get(self, deal_id: str) -> Optional[StallStatus]:
        pass

    @abstractmethod
    def all(self) -> List[StallStatus]:
        pass


class AuditStore(ABC, _LockedStore):
    """Append-only audit entries with call and record indexes"""

    @abstractmethod
    def append(self, entry: AuditEntry) -> None:
        pass

    @abstractmethod
    def get(self, entry_id: str) -> Optional[AuditEntry]:
        pass

    @abstractmethod
    def ids_for_call(self, call_id: str) -> List[str]:
        pass

    @abstractmethod
    def ids_for_record(self, record_id: str) -> List[str]:
        pass

    @abstractmethod
    def all(self) -> List[AuditEntry]:
        """All entries in insertion order"""
        pass

    @abstractmethod
    def remove(self, entry_ids: Iterable[str]) -> int:
        """Remove entries and purge them from both indexes"""
        pass


class AlertStore(ABC, _LockedStore):
    """Alerts with a deal -> alert ids index"""

    @abstractmethod
    def save(self, alert: StallAlert) -> None:
        pass

    @abstractmethod
    def get(self, alert_id: str) -> Optional[StallAlert]:
        pass

    @abstractmethod
    def ids_for_deal(self, deal_id: str) -> List[str]:
        pass

    @abstractmethod
    def all(self) -> List[StallAlert]:
        pass

    @abstractmethod
    def remove(self, alert_id: str) -> bool:
        pass


# =============================================================================
# In-memory backends
# =============================================================================

class InMemorySignalRepository(SignalRepository):
    def __init__(self):
        super().__init__()
        self._signals: Dict[str, StallSignal] = {}

    def save(self, signal: StallSignal) -> None:
        with self.lock:
            self._signals[signal.id] = signal

    def get(self, signal_id: str) -> Optional[StallSignal]:
        with self.lock:
            return self._signals.get(signal_id)

    def list_for_deal(self, deal_id: str) -> List[StallSignal]:
        with self.lock:
            return [s for s in self._signals.values() if s.deal_id == deal_id]

    def count(self) -> int:
        with self.lock:
            return len(self._signals)


class InMemoryStatusRepository(StatusRepository):
    def __init__(self):
        super().__init__()
        self._statuses: Dict[str, StallStatus] = {}

    def save(self, status: StallStatus) -> None:
        with self.lock:
            self._statuses[status.deal_id] = status

    def get(self, deal_id: str) -> Optional[StallStatus]:
        with self.lock:
            return self._statuses.get(deal_id)

    def all(self) -> List[StallStatus]:
        with self.lock:
            return list(self._statuses.values())


class InMemoryAuditStore(AuditStore):
    def __init__(self):
        super().__init__()
        self._entries: Dict[str, AuditEntry] = {}
        self._by_call: Dict[str, List[str]] = {}
        self._by_record: Dict[str, List[str]] = {}

    def append(self, entry: AuditEntry) -> None:
        with self.lock:
            if entry.id in self._entries:
                raise ValueError(f"Duplicate audit entry id: {entry.id}")
            self._entries[entry.id] = entry
            self._by_call.setdefault(entry.call_id, []).append(entry.id)
            if entry.record_id:
                self._by_record.setdefault(entry.record_id, []).append(entry.id)

    def get(self, entry_id: str) -> Optional[AuditEntry]:
        with self.lock:
            return self._entries.get(entry_id)

    def ids_for_call(self, call_id: str) -> List[str]:
        with self.lock:
            return list(self._by_call.get(call_id, []))

    def ids_for_record(self, record_id: str) -> List[str]:
        with self.lock:
            return list(self._by_record.get(record_id, []))

    def all(self) -> List[AuditEntry]:
        with self.lock:
            return list(self._entries.values())

    def remove(self, entry_ids: Iterable[str]) -> int:
        removed = 0
        with self.lock:
            for entry_id in list(entry_ids):
                entry = self._entries.pop(entry_id, None)
                if entry is None:
                    continue
                self._drop_from_index(self._by_call, entry.call_id, entry_id)
                if entry.record_id:
                    self._drop_from_index(self._by_record, entry.record_id, entry_id)
                removed += 1
        return removed

    @staticmethod
    def _drop_from_index(index: Dict[str, List[str]], key: str, entry_id: str) -> None:
        ids = index.get(key)
        if not ids:
            return
        if entry_id in ids:
            ids.remove(entry_id)
        if not ids:
            del index[key]


class InMemoryAlertStore(AlertStore):
    def __init__(self):
        super().__init__()
        self._alerts: Dict[str, StallAlert] = {}
        self._by_deal: Dict[str, List[str]] = {}

    def save(self, alert: StallAlert) -> None:
        with self.lock:
            if alert.id not in self._alerts:
                self._by_deal.setdefault(alert.deal_id, []).append(alert.id)
            self._alerts[alert.id] = alert

    def get(self, alert_id: str) -> Optional[StallAlert]:
        with self.lock:
            return self._alerts.get(alert_id)

    def ids_for_deal(self, deal_id: str) -> List[str]:
        with self.lock:
            return list(self._by_deal.get(deal_id, []))

    def all(self) -> List[StallAlert]:
        with self.lock:
            return list(self._alerts.values())

    def remove(self, alert_id: str) -> bool:
        with self.lock:
            alert = self._alerts.pop(alert_id, None)
            if alert is None:
                return False
            ids = self._by_deal.get(alert.deal_id, [])
            if alert_id in ids:
                ids.remove(alert_id)
            if not ids:
                self._by_deal.pop(alert.deal_id, None)
            return True
