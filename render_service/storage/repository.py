from __future__ import annotations

from threading import RLock
from typing import Dict, List

from render_service.models.domain import RenderJob


class RenderJobRepository:
    """Process-local job records. Callers always receive copies, never the stored instance."""

    def __init__(self) -> None:
        self._records: Dict[str, RenderJob] = {}
        self._guard = RLock()

    def save(self, job: RenderJob) -> RenderJob:
        snapshot = job.model_copy(deep=True)
        with self._guard:
            self._records[job.id] = snapshot
        return job

    def get(self, job_id: str) -> RenderJob | None:
        with self._guard:
            record = self._records.get(job_id)
        return None if record is None else record.model_copy(deep=True)

    def list(self) -> List[RenderJob]:
        """All jobs in submission order."""
        with self._guard:
            records = list(self._records.values())
        return [record.model_copy(deep=True) for record in records]

    def delete(self, job_id: str) -> bool:
        with self._guard:
            return self._records.pop(job_id, None) is not None
