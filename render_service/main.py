from __future__ import annotations

import logging
import pathlib
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.staticfiles import StaticFiles

from render_service.clients.audio_probe import probe_duration_async
from render_service.clients.image_generator import ImageGenerationClient
from render_service.clients.pexels import PexelsClient
from render_service.clients.render_engine import RemotionRenderEngine
from render_service.clients.s3_storage import BucketStore
from render_service.clients.tts import EdgeTTSClient, ElevenLabsClient, SpeechSynthesizer
from render_service.config import Settings, get_settings
from render_service.events.notifier import WebhookNotifier
from render_service.events.publisher import JobEventPublisher
from render_service.models.api import (
    EnrichRequest,
    EnrichResponse,
    MessageResponse,
    MusicStylesResponse,
    RenderCreatedResponse,
    RenderJobListResponse,
    RenderRequest,
)
from render_service.models.domain import CancelOutcome, JobData, RenderJob
from render_service.services.enrichment import SceneEnricher
from render_service.services.media_resolver import MediaResolver
from render_service.services.music_library import MusicLibrary
from render_service.services.narration import NarrationService
from render_service.services.scheduler import RenderScheduler
from render_service.storage.cache import CacheStore
from render_service.storage.repository import RenderJobRepository
from render_service.storage.retention import RetentionSweeper

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

log = logging.getLogger(__name__)

SEQUENCE_COMPOSITION_ID = "MasterSequence"


@dataclass
class RenderServices:
    settings: Settings
    scheduler: RenderScheduler
    enricher: SceneEnricher
    music: MusicLibrary
    sweeper: RetentionSweeper | None = None


def _build_synthesizer(settings: Settings) -> SpeechSynthesizer:
    if settings.tts_provider.lower() == "elevenlabs":
        return ElevenLabsClient(
            api_key=settings.elevenlabs_api_key,
            model_id=settings.elevenlabs_model_id,
            base_url=settings.elevenlabs_base_url,
        )
    return EdgeTTSClient()


def _build_events(settings: Settings) -> JobEventPublisher | None:
    if not (settings.kafka_enabled and settings.kafka_updates_topic):
        return None
    try:
        return JobEventPublisher(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            topic=settings.kafka_updates_topic,
        )
    except Exception:
        log.warning(
            "job event publisher unavailable",
            extra={"topic": settings.kafka_updates_topic},
            exc_info=True,
        )
        return None


def build_services(settings: Settings) -> RenderServices:
    base_url = settings.public_base_url.rstrip("/")
    public_dir = pathlib.Path(settings.public_dir)
    tts_cache = CacheStore(public_dir / settings.tts_cache_subdir, f"{base_url}/{settings.tts_cache_subdir}")
    music_cache = CacheStore(public_dir / settings.music_cache_subdir, f"{base_url}/{settings.music_cache_subdir}")

    pexels = PexelsClient(api_key=settings.pexels_api_key, base_url=settings.pexels_base_url)
    image_generator = ImageGenerationClient(
        zhipu_api_key=settings.zhipu_api_key,
        zhipu_model=settings.zhipu_model,
        zhipu_size=settings.zhipu_image_size,
        coze_token=settings.coze_api_token,
        coze_user_token=settings.coze_user_token,
        coze_workflow_id=settings.coze_workflow_id,
        coze_workflow_url=settings.coze_workflow_url,
        provider=settings.image_provider,
    )
    enricher = SceneEnricher(
        narration=NarrationService(_build_synthesizer(settings), tts_cache, probe_duration_async),
        media=MediaResolver(video_search=pexels, image_search=pexels, image_generator=image_generator),
        fps=settings.fps,
        default_frames=settings.default_scene_frames,
        buffer_frames=settings.narration_buffer_frames,
        min_video_seconds=settings.min_video_seconds,
        concurrency=settings.enrichment_concurrency,
    )
    storage = BucketStore(
        bucket=settings.s3_bucket,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        endpoint_url=settings.s3_endpoint_url,
        region_name=settings.s3_region,
        addressing_style=settings.s3_addressing_style,
    )
    music = MusicLibrary(
        storage=storage,
        cache=music_cache,
        probe=probe_duration_async,
        root_prefix=settings.music_root_prefix,
        fps=settings.fps,
        fallback_seconds=settings.music_fallback_seconds,
    )
    scheduler = RenderScheduler(
        repo=RenderJobRepository(),
        engine=RemotionRenderEngine(
            serve_url=settings.remotion_serve_url,
            command=settings.remotion_command,
            codec=settings.remotion_codec,
        ),
        renders_dir=settings.renders_dir,
        video_base_url=f"{base_url}/videos",
        concurrency=settings.concurrency,
        min_free_memory=settings.min_free_memory_bytes,
        watchdog_interval=settings.watchdog_interval_seconds,
        watchdog_timeout=settings.watchdog_timeout_seconds,
        notifier=WebhookNotifier(timeout=settings.webhook_timeout_seconds),
        events=_build_events(settings),
    )
    sweeper = RetentionSweeper(
        directories=[pathlib.Path(settings.renders_dir), tts_cache.directory, music_cache.directory],
        retention_minutes=settings.retention_minutes,
        interval_seconds=settings.retention_interval_seconds,
    )
    return RenderServices(settings=settings, scheduler=scheduler, enricher=enricher, music=music, sweeper=sweeper)


def get_services(request: Request) -> RenderServices:
    return request.app.state.services


def create_app(services: RenderServices | None = None) -> FastAPI:
    services = services or build_services(get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.scheduler.start()
        if services.sweeper is not None:
            services.sweeper.start()
        yield
        if services.sweeper is not None:
            await services.sweeper.stop()
        await services.scheduler.stop()

    app = FastAPI(title=services.settings.app_name, lifespan=lifespan)
    app.state.services = services

    @app.post("/renders", response_model=RenderCreatedResponse)
    async def create_render(
        payload: RenderRequest,
        services: RenderServices = Depends(get_services),
    ) -> RenderCreatedResponse:
        props = dict(payload.input_props or {})
        if payload.composition_id == SEQUENCE_COMPOSITION_ID and isinstance(props.get("scenes"), list):
            props = await _enrich_sequence_props(services, props)
        job_id = services.scheduler.create_job(
            JobData(
                compositionId=payload.composition_id,
                inputProps=props,
                webhookUrl=payload.webhook_url,
                width=payload.width,
                height=payload.height,
            )
        )
        log.info("render job created", extra={"job_id": job_id})
        return RenderCreatedResponse(jobId=job_id)

    @app.get("/renders", response_model=RenderJobListResponse)
    def list_renders(services: RenderServices = Depends(get_services)) -> RenderJobListResponse:
        return RenderJobListResponse(items=services.scheduler.list_jobs())

    @app.get("/renders/{job_id}", response_model=RenderJob)
    def get_render(job_id: str, services: RenderServices = Depends(get_services)) -> RenderJob:
        job = services.scheduler.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        return job

    @app.delete("/renders/{job_id}", response_model=MessageResponse)
    async def cancel_render(job_id: str, services: RenderServices = Depends(get_services)) -> MessageResponse:
        outcome = services.scheduler.cancel_job(job_id)
        if outcome == CancelOutcome.NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        if outcome == CancelOutcome.NOT_CANCELLABLE:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Job is not cancellable")
        return MessageResponse(message="Job cancelled")

    @app.post("/scenes:enrich", response_model=EnrichResponse)
    async def enrich_scenes(
        payload: EnrichRequest,
        services: RenderServices = Depends(get_services),
    ) -> EnrichResponse:
        result = await services.enricher.enrich(
            payload.scenes,
            payload.voice or services.settings.default_voice,
            payload.compute_duration,
        )
        return EnrichResponse(scenes=result.scenes, subtitles=result.subtitles, totalFrames=result.total_frames)

    @app.get("/api/music/styles", response_model=MusicStylesResponse)
    async def list_music_styles(services: RenderServices = Depends(get_services)) -> MusicStylesResponse:
        return MusicStylesResponse(styles=await services.music.list_styles())

    settings = services.settings
    app.mount(
        "/videos",
        StaticFiles(directory=settings.renders_dir, check_dir=False),
        name="videos",
    )
    app.mount(
        "/audio",
        StaticFiles(directory=str(pathlib.Path(settings.public_dir) / "audio"), check_dir=False),
        name="audio",
    )
    return app


async def _enrich_sequence_props(services: RenderServices, props: dict) -> dict:
    voice = props.get("voice") or services.settings.default_voice
    try:
        result = await services.enricher.enrich(props["scenes"], voice, compute_duration=True)
        enriched = dict(props)
        enriched["scenes"] = [scene.to_props() for scene in result.scenes]
        if result.subtitles:
            enriched["subtitles"] = [cue.model_dump(by_alias=True) for cue in result.subtitles]
        return await services.music.apply_background_music(enriched)
    except Exception:
        log.exception("sequence enrichment failed, rendering original props")
        return props


app = create_app()
