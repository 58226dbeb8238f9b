from __future__ import annotations

import json
import logging
from typing import Any

from kafka import KafkaProducer
from kafka.errors import KafkaError

from render_service.models.domain import RenderJob


def _encode(value: dict[str, Any]) -> bytes:
    return json.dumps(value, ensure_ascii=False, default=str).encode("utf-8")


class JobEventPublisher:
    """Streams a snapshot of every render job state change to a Kafka topic, keyed by job id."""

    def __init__(self, bootstrap_servers: str, topic: str, logger: logging.Logger | None = None) -> None:
        if not (bootstrap_servers and topic):
            raise ValueError("kafka bootstrap servers and topic are required")
        self.topic = topic
        self.log = logger or logging.getLogger(__name__)
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers.split(","),
            key_serializer=str.encode,
            value_serializer=_encode,
            linger_ms=5,
        )

    def publish_job(self, job: RenderJob) -> None:
        event = {
            "type": f"render.{job.status.value}",
            "job": job.model_dump(mode="json", by_alias=True),
        }
        try:
            self._producer.send(self.topic, key=job.id, value=event)
        except Exception:
            self.log.warning("job update not published", extra={"job_id": job.id, "topic": self.topic}, exc_info=True)

    def close(self) -> None:
        try:
            self._producer.flush(timeout=5)
        except KafkaError:
            self.log.warning("pending job updates dropped on shutdown", extra={"topic": self.topic}, exc_info=True)
        finally:
            self._producer.close()
