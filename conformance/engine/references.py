"""
Run-scoped store of discovered resource IDs.
"""

import threading
from collections.abc import Iterable

from conformance.config.logging import get_logger
from conformance.models.results import ReferenceRecord

logger = get_logger(__name__)


class ReferenceStore:
    """
    Append-only mapping of resource type to the IDs discovered during one run.

    Sequences record what their searches and reads returned; later sequences
    (read, vread and history tests, delayed sequences) consume it. Inserting
    an ID that is already known is a no-op.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._ids: dict[str, dict[str, None]] = {}
        self._lock = threading.Lock()

    def record(self, resource_type: str, resource_id: str) -> bool:
        """
        Record a discovered resource.

        Args:
            resource_type: FHIR resource type
            resource_id: Logical ID on the server

        Returns:
            True if the ID was new, False if it was already recorded
        """
        if not resource_type or not resource_id:
            return False

        with self._lock:
            ids = self._ids.setdefault(resource_type, {})
            if resource_id in ids:
                return False
            ids[resource_id] = None

        logger.debug("Recorded reference", resource_type=resource_type, resource_id=resource_id)
        return True

    def record_many(self, resource_type: str, resource_ids: Iterable[str]) -> int:
        """Record several IDs of one type, returning how many were new."""
        return sum(1 for resource_id in resource_ids if self.record(resource_type, resource_id))

    def list_ids(self, resource_type: str) -> list[str]:
        """IDs recorded for ``resource_type`` in insertion order."""
        with self._lock:
            return list(self._ids.get(resource_type, {}))

    def resource_types(self) -> list[str]:
        with self._lock:
            return [resource_type for resource_type, ids in self._ids.items() if ids]

    def records(self) -> list[ReferenceRecord]:
        with self._lock:
            return [
                ReferenceRecord(resource_type=resource_type, resource_id=resource_id, run_id=self.run_id)
                for resource_type, ids in self._ids.items()
                for resource_id in ids
            ]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(ids) for ids in self._ids.values())
