from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RENDER_SERVICE_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "render-service"
    public_base_url: str = "http://localhost:3005"

    # Local storage layout
    renders_dir: str = "renders"
    public_dir: str = "public"
    tts_cache_subdir: str = "audio/tts"
    music_cache_subdir: str = "audio/cache"

    # Scheduler
    concurrency: int = 1
    min_free_memory_bytes: int = 2 * 1024 * 1024 * 1024
    watchdog_interval_seconds: float = 30.0
    watchdog_timeout_seconds: float = 15 * 60.0
    webhook_timeout_seconds: float = 10.0

    # Rendering engine
    remotion_serve_url: str = ""
    remotion_command: str = "npx"
    remotion_codec: str = "h264"

    # Enrichment
    fps: int = 30
    default_scene_frames: int = 150
    narration_buffer_frames: int = 15
    default_voice: str = "zh-CN-XiaoxiaoNeural"
    enrichment_concurrency: int = 4
    min_video_seconds: float = 5.0

    # Speech synthesis
    tts_provider: str = "edge-tts"
    elevenlabs_api_key: str = ""
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    elevenlabs_base_url: str = "https://api.elevenlabs.io"

    # Stock media and image generation
    pexels_api_key: str = ""
    pexels_base_url: str = "https://api.pexels.com"
    zhipu_api_key: str = ""
    zhipu_model: str = "glm-image"
    zhipu_image_size: str = "1728x960"
    coze_api_token: str = ""
    coze_user_token: str = ""
    coze_workflow_id: str = ""
    coze_workflow_url: str = "https://auto.kanglan.vip/cozeapi/coze/runWorkflow"
    image_provider: str = ""

    # Music repository (S3-compatible bucket, one prefix per style)
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_bucket: str = "music-library"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str | None = None
    music_root_prefix: str = "music"
    music_fallback_seconds: float = 180.0

    # Job update events
    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_updates_topic: str = "render_updates"

    # Retention sweep
    retention_minutes: int = 60
    retention_interval_seconds: float = 600.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
