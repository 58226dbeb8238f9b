from __future__ import annotations

import asyncio
import os

from moviepy import AudioFileClip


def probe_duration(path: str | os.PathLike[str]) -> float:
    clip = AudioFileClip(str(path))
    try:
        return float(clip.duration or 0.0)
    finally:
        clip.close()


async def probe_duration_async(path: str | os.PathLike[str]) -> float:
    return await asyncio.to_thread(probe_duration, path)
