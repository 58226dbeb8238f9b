import asyncio

from conftest import FakeSynthesizer

from render_service.services.narration import NarrationService
from render_service.storage.cache import CacheStore


def test_same_text_and_voice_synthesized_once(narration, synthesizer, tts_cache):
    first = asyncio.run(narration.synthesize("Hello there", "voice-a"))
    second = asyncio.run(narration.synthesize("Hello there", "voice-a"))

    assert first.url == second.url
    assert first.generated is True
    assert second.generated is False
    assert synthesizer.calls == [("Hello there", "voice-a")]
    assert first.path.read_bytes() == b"voice-a:Hello there"
    assert first.seconds == 4.0


def test_voice_is_part_of_cache_key(narration, synthesizer):
    a = asyncio.run(narration.synthesize("Hi", "voice-a"))
    b = asyncio.run(narration.synthesize("Hi", "voice-b"))

    assert a.path != b.path
    assert len(synthesizer.calls) == 2


def test_cache_key_does_not_collide_on_concatenation():
    assert CacheStore.key("ab", "c") != CacheStore.key("a", "bc")


def test_probe_failure_reports_zero_seconds(tts_cache):
    async def broken_probe(path):
        raise OSError("ffmpeg missing")

    service = NarrationService(FakeSynthesizer(), tts_cache, broken_probe)

    result = asyncio.run(service.synthesize("Hi", "v"))

    assert result.seconds == 0.0
    assert result.path.exists()


def test_measure_url_only_reads_own_cache(narration, tts_cache):
    path = tts_cache.write(tts_cache.key("clip"), b"mp3")

    assert asyncio.run(narration.measure_url(tts_cache.url_for(path))) == 4.0
    assert asyncio.run(narration.measure_url("https://elsewhere/clip.mp3")) is None
    assert asyncio.run(narration.measure_url("http://test/audio/tts/../secret.mp3")) is None
    assert asyncio.run(narration.measure_url("http://test/audio/tts/missing.mp3")) is None


def test_cache_ignores_empty_entries(tts_cache):
    key = tts_cache.key("empty")
    tts_cache.path_for(key).write_bytes(b"")

    assert tts_cache.lookup(key) is None
    tts_cache.write(key, b"data")
    assert tts_cache.lookup(key) == tts_cache.path_for(key)
    assert not [entry for entry in tts_cache.directory.iterdir() if entry.name.startswith(".tmp-")]
