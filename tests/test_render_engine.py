import asyncio
import sys
import tempfile
import textwrap

import pytest

from render_service.clients.render_engine import (
    CancelSignal,
    RemotionRenderEngine,
    RenderCancelledError,
    RenderEngineError,
    RenderRequest,
)


def pump(engine: RemotionRenderEngine, output: bytes) -> tuple[list[float], list[str]]:
    reported: list[float] = []
    tail = []

    async def scenario():
        reader = asyncio.StreamReader()
        reader.feed_data(output)
        reader.feed_eof()
        await engine._pump(reader, reported.append, tail)

    asyncio.run(scenario())
    return reported, list(tail)


def test_progress_parsed_from_carriage_return_updates():
    engine = RemotionRenderEngine(serve_url="http://bundle")
    output = b"Bundling...\rRendered 10/100\rRendered 50/100\rRendered 100/100\nEncoded 50/100\rEncoded 100/100\n"

    reported, tail = pump(engine, output)

    assert reported == pytest.approx([0.07, 0.35, 0.7, 0.85, 1.0])
    assert tail[0] == "Bundling..."


def test_progress_never_goes_backwards():
    engine = RemotionRenderEngine(serve_url="http://bundle")

    reported, _ = pump(engine, b"Rendered 40/100\nRendered 20/100\nRendered 0/0\nnoise\n")

    assert reported == pytest.approx([0.28])


def test_build_command_includes_dimensions():
    engine = RemotionRenderEngine(serve_url="http://bundle", codec="h265")
    request = RenderRequest(
        composition_id="MasterSequence",
        output_location="/out/job.mp4",
        width=1080,
        height=1920,
    )

    cmd = engine.build_command(request, "/tmp/props.json")

    assert cmd[:6] == ["npx", "remotion", "render", "http://bundle", "MasterSequence", "/out/job.mp4"]
    assert "--props=/tmp/props.json" in cmd
    assert "--codec=h265" in cmd
    assert cmd[-2:] == ["--width=1080", "--height=1920"]


def test_render_requires_serve_url():
    engine = RemotionRenderEngine(serve_url="")

    with pytest.raises(RenderEngineError):
        asyncio.run(engine.render(RenderRequest(composition_id="A"), lambda _: None, CancelSignal()))


def test_cancel_signal_keeps_first_reason():
    async def scenario():
        signal = CancelSignal()
        signal.cancel("first")
        signal.cancel("second")
        with pytest.raises(RenderCancelledError, match="first"):
            signal.raise_if_cancelled()

    asyncio.run(scenario())


FAKE_CLI = textwrap.dedent(
    """
    import json
    import sys
    import time

    args = sys.argv[1:]
    props_path = next(arg.split("=", 1)[1] for arg in args if arg.startswith("--props="))
    with open(props_path, encoding="utf-8") as fh:
        mode = json.load(fh)["mode"]
    output = args[3]

    if mode == "ok":
        print("Rendered 50/100", flush=True)
        print("Rendered 100/100", flush=True)
        print("Encoded 100/100", flush=True)
        with open(output, "wb") as fh:
            fh.write(b"mp4")
    elif mode == "fail":
        print("Error: composition not found", flush=True)
        sys.exit(3)
    else:
        print("Rendered 1/100", flush=True)
        time.sleep(60)
    """
)


@pytest.fixture
def scratch(tmp_path, monkeypatch):
    """Runs ``python remotion render ...`` against a scripted CLI and collects temp files."""
    (tmp_path / "remotion").write_text(FAKE_CLI, encoding="utf-8")
    scratch_dir = tmp_path / "scratch"
    scratch_dir.mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(tempfile, "tempdir", str(scratch_dir))
    return scratch_dir


def scripted(tmp_path, mode: str) -> RenderRequest:
    return RenderRequest(
        composition_id="Demo",
        input_props={"mode": mode},
        output_location=str(tmp_path / "out" / "job.mp4"),
    )


def test_render_subprocess_reports_progress_and_writes_output(tmp_path, scratch):
    engine = RemotionRenderEngine(serve_url="http://bundle", command=sys.executable)
    reported: list[float] = []

    asyncio.run(engine.render(scripted(tmp_path, "ok"), reported.append, CancelSignal()))

    assert reported == pytest.approx([0.35, 0.7, 1.0])
    assert (tmp_path / "out" / "job.mp4").read_bytes() == b"mp4"
    assert list(scratch.iterdir()) == []


def test_render_nonzero_exit_carries_output_tail(tmp_path, scratch):
    engine = RemotionRenderEngine(serve_url="http://bundle", command=sys.executable)

    with pytest.raises(RenderEngineError, match="code 3.*composition not found"):
        asyncio.run(engine.render(scripted(tmp_path, "fail"), lambda _: None, CancelSignal()))

    assert list(scratch.iterdir()) == []


def test_cancel_terminates_running_render(tmp_path, scratch):
    engine = RemotionRenderEngine(serve_url="http://bundle", command=sys.executable)

    async def scenario():
        signal = CancelSignal()
        reported: list[float] = []
        task = asyncio.create_task(engine.render(scripted(tmp_path, "hang"), reported.append, signal))
        for _ in range(200):
            if reported:
                break
            await asyncio.sleep(0.05)
        signal.cancel("stopped by operator")
        with pytest.raises(RenderCancelledError, match="stopped by operator"):
            await asyncio.wait_for(task, timeout=10)
        return reported

    reported = asyncio.run(scenario())

    assert reported == pytest.approx([0.007])
    assert list(scratch.iterdir()) == []


def test_missing_render_command_leaves_no_props_file(tmp_path, scratch):
    engine = RemotionRenderEngine(serve_url="http://bundle", command="render-cli-that-is-not-installed")

    with pytest.raises(FileNotFoundError):
        asyncio.run(engine.render(scripted(tmp_path, "ok"), lambda _: None, CancelSignal()))

    assert list(scratch.iterdir()) == []
