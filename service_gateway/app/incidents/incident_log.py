"""
Bounded incident log for rejected and failed requests.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..domain.clock import Clock, epoch_millis

DEFAULT_CAPACITY = 1000


class IncidentType(str, Enum):
    """Kinds of security-relevant events the gateway records."""

    MISSING_API_KEY = "MISSING_API_KEY"
    INVALID_API_KEY = "INVALID_API_KEY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    MISSING_SECURITY_HEADERS = "MISSING_SECURITY_HEADERS"
    INVALID_TIMESTAMP = "INVALID_TIMESTAMP"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    REPLAY_ATTACK = "REPLAY_ATTACK"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    WEBHOOK_ERROR = "WEBHOOK_ERROR"
    NOT_FOUND = "NOT_FOUND"
    SERVER_START = "SERVER_START"
    SERVER_SHUTDOWN = "SERVER_SHUTDOWN"


@dataclass(frozen=True)
class Incident:
    """One appended incident record."""

    type: IncidentType
    timestamp: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type.value, "timestamp": self.timestamp, **self.context}

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type.value, "timestamp": self.timestamp}


class IncidentLog:
    """Fixed-capacity ring of incidents; the oldest entry is evicted first.

    Internal stages append through ``record``; everything handed out is a
    copy so external readers can not mutate the log.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, clock: Clock = epoch_millis,
                 metrics: Optional[MetricsCollector] = None):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._clock = clock
        self._metrics = metrics
        self._lock = threading.Lock()
        self._entries: Deque[Incident] = deque(maxlen=capacity)
        self._total = 0
        self.logger = get_logger("gateway.incidents")

    def record(self, incident_type: IncidentType, **context: Any) -> Incident:
        """Append an incident, dropping empty context values."""
        incident = Incident(
            type=incident_type,
            timestamp=self._clock(),
            context={key: value for key, value in context.items() if value is not None},
        )
        with self._lock:
            self._entries.append(incident)
            self._total += 1

        self.logger.warning("Security incident", incident_id=incident.id,
                            incident_type=incident_type.value, **incident.context)
        if self._metrics is not None:
            self._metrics.increment_counter("incidents_total", type=incident_type.value)
        return incident

    def recent(self, limit: int = 10) -> List[Incident]:
        """Newest ``limit`` incidents, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._entries)[-limit:]

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [incident.to_dict() for incident in self._entries]

    def count_by_type(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for incident in self._entries:
                counts[incident.type.value] = counts.get(incident.type.value, 0) + 1
        return counts

    @property
    def total_recorded(self) -> int:
        """Incidents recorded since start, evicted ones included."""
        with self._lock:
            return self._total

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
