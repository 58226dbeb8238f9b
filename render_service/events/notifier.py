from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from render_service.models.domain import JobStatus, RenderJob


class WebhookNotifier:
    """Completion callbacks for jobs that carry a ``webhookUrl``.

    Each delivery runs as a detached task and is attempted exactly once.
    A failed delivery is logged and dropped: it is never retried, never
    re-raised and never changes the job it reports on.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)
        self._transport = transport
        self._pending: set[asyncio.Task[None]] = set()

    @staticmethod
    def build_payload(job: RenderJob) -> dict[str, Any]:
        payload: dict[str, Any] = {"jobId": job.id, "status": job.status.value}
        if job.status == JobStatus.COMPLETED:
            payload["videoUrl"] = job.video_url
        else:
            payload["error"] = job.error
        payload["originalProps"] = job.data.input_props
        return payload

    def notify(self, job: RenderJob) -> asyncio.Task[None] | None:
        if not job.data.webhook_url:
            return None
        task = asyncio.get_running_loop().create_task(
            self._deliver(job.id, job.data.webhook_url, self.build_payload(job))
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, job_id: str, url: str, payload: dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        except Exception:
            self.log.warning("webhook delivery failed", extra={"job_id": job_id, "url": url}, exc_info=True)
            return
        self.log.info("webhook delivered", extra={"job_id": job_id, "status_code": response.status_code})
