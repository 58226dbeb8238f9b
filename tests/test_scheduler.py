import asyncio

import httpx

from conftest import FakeRenderEngine, settle

from render_service.events.notifier import WebhookNotifier
from render_service.models.domain import CancelOutcome, JobData, JobStatus
from render_service.services.scheduler import RenderScheduler
from render_service.storage.repository import RenderJobRepository


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_scheduler(tmp_path, engine, **kwargs) -> RenderScheduler:
    kwargs.setdefault("memory_probe", lambda: 8 * 1024**3)
    return RenderScheduler(
        repo=RenderJobRepository(),
        engine=engine,
        renders_dir=tmp_path / "renders",
        video_base_url="http://test/videos",
        **kwargs,
    )


def job(composition: str = "Demo", **kwargs) -> JobData:
    return JobData(compositionId=composition, inputProps={"title": composition}, **kwargs)


def test_jobs_run_in_fifo_order_within_concurrency(tmp_path):
    async def scenario():
        engine = FakeRenderEngine()
        scheduler = make_scheduler(tmp_path, engine, concurrency=2)
        first, second, third = (scheduler.create_job(job(name)) for name in ("a", "b", "c"))
        await settle()

        assert engine.started == [first, second]
        assert scheduler.queued_ids == [third]
        assert scheduler.get_job(third).status == JobStatus.QUEUED

        engine.finish(first)
        await settle()
        assert engine.started == [first, second, third]
        assert scheduler.active_count == 2

        done = scheduler.get_job(first)
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 1.0
        assert done.video_url == f"http://test/videos/{first}.mp4"
        assert done.output_location.endswith(f"{first}.mp4")

        engine.finish(second)
        engine.finish(third)
        await settle()
        assert scheduler.active_count == 0
        assert scheduler.cancel_job(first) == CancelOutcome.NOT_CANCELLABLE

    asyncio.run(scenario())


def test_jobs_created_before_the_loop_runs_wait_for_start(tmp_path):
    engine = FakeRenderEngine()
    scheduler = make_scheduler(tmp_path, engine)

    job_id = scheduler.create_job(job())

    assert scheduler.get_job(job_id).status == JobStatus.QUEUED
    assert scheduler.queued_ids == [job_id]
    assert scheduler.active_count == 0

    async def scenario():
        scheduler.start()
        await settle()
        assert engine.started == [job_id]
        assert scheduler.get_job(job_id).status == JobStatus.IN_PROGRESS
        engine.finish(job_id)
        await settle()
        await scheduler.stop()

    asyncio.run(scenario())

    assert scheduler.get_job(job_id).status == JobStatus.COMPLETED


def test_first_job_is_admitted_without_waiting(tmp_path):
    async def scenario():
        scheduler = make_scheduler(tmp_path, FakeRenderEngine())
        job_id = scheduler.create_job(job(width=1920, height=1080))

        record = scheduler.get_job(job_id)
        assert record.status == JobStatus.IN_PROGRESS
        assert record.data.width == 1920
        await scheduler.stop()

    asyncio.run(scenario())


def test_cancel_queued_job_removes_it(tmp_path):
    async def scenario():
        engine = FakeRenderEngine()
        scheduler = make_scheduler(tmp_path, engine)
        running = scheduler.create_job(job("a"))
        waiting = scheduler.create_job(job("b"))

        assert scheduler.cancel_job(waiting) == CancelOutcome.CANCELLED
        assert scheduler.get_job(waiting) is None
        assert scheduler.cancel_job(waiting) == CancelOutcome.NOT_FOUND

        await settle()
        engine.finish(running)
        await settle()
        assert engine.started == [running]

    asyncio.run(scenario())


def test_cancel_in_progress_job_fails_it(tmp_path):
    async def scenario():
        engine = FakeRenderEngine()
        scheduler = make_scheduler(tmp_path, engine)
        job_id = scheduler.create_job(job())
        await settle()

        assert scheduler.cancel_job(job_id) == CancelOutcome.CANCELLED
        await settle()

        record = scheduler.get_job(job_id)
        assert record.status == JobStatus.FAILED
        assert record.error == "Render cancelled by request"
        assert scheduler.cancel_job(job_id) == CancelOutcome.NOT_CANCELLABLE

    asyncio.run(scenario())


def test_engine_error_marks_job_failed(tmp_path):
    async def scenario():
        engine = FakeRenderEngine()
        scheduler = make_scheduler(tmp_path, engine)
        job_id = scheduler.create_job(job())
        await settle()

        engine.finish(job_id, error="chromium crashed")
        await settle()

        record = scheduler.get_job(job_id)
        assert record.status == JobStatus.FAILED
        assert record.error == "chromium crashed"
        assert record.video_url is None

    asyncio.run(scenario())


def test_progress_updates_and_terminal_jobs_ignore_late_progress(tmp_path):
    async def scenario():
        engine = FakeRenderEngine()
        clock = Clock()
        scheduler = make_scheduler(tmp_path, engine, clock=clock)
        job_id = scheduler.create_job(job())
        await settle()

        clock.now += 12
        engine.progress[job_id](0.4)
        record = scheduler.get_job(job_id)
        assert record.progress == 0.4
        assert record.elapsed_seconds == 12

        engine.finish(job_id)
        await settle()
        engine.progress[job_id](0.1)
        assert scheduler.get_job(job_id).progress == 1.0

    asyncio.run(scenario())


def test_watchdog_cancels_stalled_render(tmp_path):
    async def scenario():
        engine = FakeRenderEngine()
        clock = Clock()
        scheduler = make_scheduler(tmp_path, engine, clock=clock, watchdog_timeout=900)
        job_id = scheduler.create_job(job())
        await settle()

        clock.now += 600
        assert scheduler.check_stalled() == []
        engine.progress[job_id](0.2)

        clock.now += 901
        assert scheduler.check_stalled() == [job_id]
        await settle()

        record = scheduler.get_job(job_id)
        assert record.status == JobStatus.FAILED
        assert "timed out" in record.error

    asyncio.run(scenario())


def test_low_memory_defers_second_job_but_never_the_first(tmp_path):
    async def scenario():
        engine = FakeRenderEngine()
        free = {"bytes": 0}
        scheduler = make_scheduler(
            tmp_path,
            engine,
            concurrency=2,
            min_free_memory=1024,
            memory_probe=lambda: free["bytes"],
        )
        first = scheduler.create_job(job("a"))
        second = scheduler.create_job(job("b"))
        await settle()

        assert engine.started == [first]
        assert scheduler.queued_ids == [second]

        free["bytes"] = 4096
        engine.finish(first)
        await settle()
        assert engine.started == [first, second]

        engine.finish(second)
        await settle()

    asyncio.run(scenario())


def test_webhook_receives_terminal_payload(tmp_path):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append((str(request.url), request.read()))
        return httpx.Response(200)

    async def scenario():
        engine = FakeRenderEngine()
        notifier = WebhookNotifier(transport=httpx.MockTransport(handler))
        scheduler = make_scheduler(tmp_path, engine, notifier=notifier)
        job_id = scheduler.create_job(job(webhookUrl="http://hooks.test/done"))
        await settle()
        engine.finish(job_id)
        await settle()
        await scheduler.stop()
        return job_id

    job_id = asyncio.run(scenario())

    assert len(received) == 1
    url, body = received[0]
    assert url == "http://hooks.test/done"
    assert job_id.encode() in body
    assert b'"status":"completed"' in body.replace(b" ", b"")


def test_webhook_failure_does_not_touch_job(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async def scenario():
        engine = FakeRenderEngine()
        notifier = WebhookNotifier(transport=httpx.MockTransport(handler))
        scheduler = make_scheduler(tmp_path, engine, notifier=notifier)
        job_id = scheduler.create_job(job(webhookUrl="http://hooks.test/done"))
        await settle()
        engine.finish(job_id)
        await settle()
        await notifier.drain()
        return scheduler.get_job(job_id)

    record = asyncio.run(scenario())

    assert record.status == JobStatus.COMPLETED


def test_stop_fails_in_flight_renders(tmp_path):
    async def scenario():
        engine = FakeRenderEngine()
        scheduler = make_scheduler(tmp_path, engine)
        scheduler.start()
        job_id = scheduler.create_job(job())
        await settle()
        await scheduler.stop()
        return scheduler.get_job(job_id)

    record = asyncio.run(scenario())

    assert record.status == JobStatus.FAILED
    assert record.error == "Render service shutting down"
