from __future__ import annotations

import hashlib
import logging
import os
import pathlib
import tempfile
from typing import Optional


class CacheStore:
    """Write-once, content-addressed files served under a public URL prefix.

    Entries are never invalidated here; the retention sweep owns their lifetime.
    Concurrent writers of the same key produce identical bytes, so the last
    atomic rename simply wins.
    """

    def __init__(
        self,
        directory: str | os.PathLike[str],
        public_url: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.directory = pathlib.Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.public_url_base = public_url.rstrip("/")
        self.log = logger or logging.getLogger(__name__)

    @staticmethod
    def key(*parts: str) -> str:
        digest = hashlib.md5()
        digest.update("\x00".join(parts).encode("utf-8"))
        return digest.hexdigest()

    def path_for(self, key: str, suffix: str = ".mp3") -> pathlib.Path:
        return self.directory / f"{key}{suffix}"

    def lookup(self, key: str, suffix: str = ".mp3") -> pathlib.Path | None:
        path = self.path_for(key, suffix)
        if path.is_file() and path.stat().st_size > 0:
            return path
        return None

    def write(self, key: str, data: bytes, suffix: str = ".mp3") -> pathlib.Path:
        path = self.path_for(key, suffix)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=suffix)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise
        self.log.debug("cache entry written", extra={"key": key, "size": len(data)})
        return path

    def url_for(self, path: pathlib.Path) -> str:
        return f"{self.public_url_base}/{path.name}"
