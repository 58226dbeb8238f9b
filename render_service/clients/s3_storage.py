from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError


def _clean_key(path: str | None) -> str:
    if not path:
        return ""
    return "/".join(part for part in path.strip().split("/") if part)


class BucketStore:
    """Read access to an S3-compatible bucket laid out as ``<prefix>/<folder>/<object>``.

    Without credentials the store keeps objects in a process-local dict, which
    is enough for development and tests.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None = None,
        secret_key: str | None = None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        addressing_style: str | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.log = logger or logging.getLogger(__name__)
        self._local: Dict[str, bytes] = {}
        self._s3 = None
        access_key = (access_key or "").strip()
        secret_key = (secret_key or "").strip()
        if self.bucket and access_key and secret_key:
            self._s3 = boto3.client(
                "s3",
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                endpoint_url=(endpoint_url or "").rstrip("/") or None,
                region_name=(region_name or "").strip() or None,
                config=BotoConfig(s3={"addressing_style": (addressing_style or "virtual").lower()}),
            )
        else:
            self.log.info("bucket credentials missing, using local object store", extra={"bucket": self.bucket})

    @property
    def remote(self) -> bool:
        return self._s3 is not None

    def put(self, key: str, data: bytes) -> str:
        """Seed the local store; the remote bucket is read-only."""
        if self.remote:
            raise ValueError("bucket is read-only")
        key = _clean_key(key)
        self._local[key] = data
        return key

    def folders(self, prefix: str | None = None) -> List[str]:
        """Immediate sub-folder names under ``prefix``."""
        base = self._folder(prefix)
        if not self.remote:
            rests = [key[len(base):] for key in self._local if key.startswith(base)]
            return sorted({rest.split("/", 1)[0] for rest in rests if "/" in rest})
        names: List[str] = []
        for page in self._pages(Prefix=base, Delimiter="/"):
            names.extend(
                entry["Prefix"][len(base):].strip("/")
                for entry in page.get("CommonPrefixes", [])
                if entry.get("Prefix", "")[len(base):].strip("/")
            )
        return names

    def objects(self, prefix: str | None = None) -> List[dict[str, Any]]:
        base = self._folder(prefix)
        if not self.remote:
            return [{"key": key, "size": len(data)} for key, data in self._local.items() if key.startswith(base)]
        return [
            {"key": obj["Key"], "size": obj.get("Size")}
            for page in self._pages(Prefix=base)
            for obj in page.get("Contents", [])
            if obj.get("Key") and not obj["Key"].endswith("/")
        ]

    def fetch(self, key: str) -> bytes:
        key = _clean_key(key)
        if not self.remote:
            try:
                return self._local[key]
            except KeyError:
                raise ValueError(f"object {key} not found") from None
        try:
            body = self._s3.get_object(Bucket=self.bucket, Key=key)["Body"]
            return body.read()
        except (BotoCoreError, ClientError) as exc:
            raise ValueError(f"S3 download failed: {exc}") from exc

    def _pages(self, **params: Any) -> Iterator[dict[str, Any]]:
        paginator = self._s3.get_paginator("list_objects_v2")
        try:
            yield from paginator.paginate(Bucket=self.bucket, **params)
        except (BotoCoreError, ClientError) as exc:
            raise ValueError(f"S3 list failed: {exc}") from exc

    @staticmethod
    def _folder(prefix: str | None) -> str:
        clean = _clean_key(prefix)
        return f"{clean}/" if clean else ""
