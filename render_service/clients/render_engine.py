from __future__ import annotations

import asyncio
import collections
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

ProgressCallback = Callable[[float], None]

_PROGRESS_RE = re.compile(r"(Rendered|Encoded)\s+(\d+)\s*/\s*(\d+)")
_LINE_SPLIT_RE = re.compile(r"[\r\n]+")


class RenderEngineError(Exception):
    """The rendering engine exited without producing the video."""


class RenderCancelledError(RenderEngineError):
    """The render was aborted through its cancel signal."""


class CancelSignal:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Render cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RenderCancelledError(self.reason or "Render cancelled")


@dataclass(frozen=True)
class RenderRequest:
    composition_id: str
    input_props: dict[str, Any] = field(default_factory=dict)
    output_location: str = ""
    width: Optional[int] = None
    height: Optional[int] = None


class RenderEngine(Protocol):
    async def render(
        self,
        request: RenderRequest,
        on_progress: ProgressCallback,
        cancel_signal: CancelSignal,
    ) -> None: ...  # pragma: no cover


class RemotionRenderEngine:
    """Drives ``remotion render`` as a subprocess and turns its frame counters into progress."""

    def __init__(
        self,
        serve_url: str,
        command: str = "npx",
        codec: str = "h264",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.serve_url = serve_url
        self.command = command
        self.codec = codec
        self.log = logger or logging.getLogger(__name__)

    def build_command(self, request: RenderRequest, props_path: str) -> list[str]:
        cmd = [
            self.command,
            "remotion",
            "render",
            self.serve_url,
            request.composition_id,
            request.output_location,
            f"--props={props_path}",
            f"--codec={self.codec}",
        ]
        if request.width:
            cmd.append(f"--width={request.width}")
        if request.height:
            cmd.append(f"--height={request.height}")
        return cmd

    async def render(
        self,
        request: RenderRequest,
        on_progress: ProgressCallback,
        cancel_signal: CancelSignal,
    ) -> None:
        if not self.serve_url:
            raise RenderEngineError("remotion serve url is not configured")
        cancel_signal.raise_if_cancelled()
        os.makedirs(os.path.dirname(request.output_location) or ".", exist_ok=True)
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False, encoding="utf-8") as tmp:
            json.dump(request.input_props, tmp, ensure_ascii=False)
            props_path = tmp.name
        tail: collections.deque[str] = collections.deque(maxlen=20)
        proc: asyncio.subprocess.Process | None = None
        tasks: list[asyncio.Task[None]] = []
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(request, props_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            reader = asyncio.create_task(self._pump(proc.stdout, on_progress, tail))
            waiter = asyncio.create_task(cancel_signal.wait())
            tasks = [reader, waiter]
            done, _ = await asyncio.wait({reader, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if waiter in done:
                raise RenderCancelledError(cancel_signal.reason or "Render cancelled")
            returncode = await proc.wait()
            if returncode != 0:
                raise RenderEngineError(f"remotion exited with code {returncode}: {' | '.join(tail)}")
            self.log.info("remotion render finished", extra={"output": request.output_location})
        finally:
            for task in tasks:
                task.cancel()
            if proc is not None and proc.returncode is None:
                self.log.info("terminating remotion process", extra={"pid": proc.pid})
                proc.terminate()
                await proc.wait()
            os.remove(props_path)

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        on_progress: ProgressCallback,
        tail: collections.deque[str],
    ) -> None:
        if stream is None:
            return
        stages = {"Rendered": 0.0, "Encoded": 0.0}
        best = 0.0
        buffer = ""
        while True:
            chunk = await stream.read(4096)
            if chunk:
                buffer += chunk.decode("utf-8", errors="replace")
                *lines, buffer = _LINE_SPLIT_RE.split(buffer)
            else:
                lines, buffer = [buffer], ""
            for line in lines:
                line = line.strip()
                if not line:
                    continue
                tail.append(line)
                match = _PROGRESS_RE.search(line)
                if not match:
                    continue
                done, total = int(match.group(2)), int(match.group(3))
                if total <= 0:
                    continue
                stages[match.group(1)] = min(done / total, 1.0)
                fraction = stages["Rendered"] * 0.7 + stages["Encoded"] * 0.3
                if fraction > best:
                    best = fraction
                    on_progress(best)
            if not chunk:
                return
