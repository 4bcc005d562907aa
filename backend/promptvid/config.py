"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class ServicesConfig(BaseModel):
    """Base URLs and credentials for the external generation services."""

    podcast_url: str = "http://localhost:8001"
    keyword_url: str = "http://localhost:8002"
    render_url: str = "http://localhost:8003/api/v1/video-creation/"
    image_search_url: str = "https://api.pexels.com/v1/search"
    image_search_api_key: str = ""
    http_timeout: float = 120.0
    languages: tuple[str, str] = ("vi", "en")


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    content_generation_attempts: int = Field(default=5, ge=1)
    content_generation_delay: float = Field(default=0.0, ge=0)
    podcast_poll_interval: float = 5.0
    podcast_poll_max: int = 120
    keyword_poll_interval: float = 1.0
    keyword_timeout: float = 60.0
    image_count: int = Field(default=12, ge=1)
    render_poll_max_attempts: int = Field(default=60 * 20, ge=1)
    render_poll_delay: float = Field(default=1.0, ge=0)
    render_failure_policy: Literal["fatal", "tolerate"] = "fatal"
    submit_retry_attempts: int = Field(default=3, ge=1)


class PresentationConfig(BaseModel):
    """Fixed render parameters applied to every clip."""

    fps: int = 24
    video_size: tuple[int, int] = (1920, 1080)
    font_color: str = "white"
    background_color: str = "black"
    music_path: Path = Path("assets/music.mp3")


class StorageConfig(BaseModel):
    """Working directory and object storage configuration."""

    work_dir: Path = Path("tmp")
    bucket: str = "promptvid"
    endpoint_url: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    region: str = "auto"
    key_prefix: str = "videos"

    @field_validator("work_dir", mode="before")
    @classmethod
    def convert_work_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class BusConfig(BaseModel):
    """Message bus topics."""

    dispatch_topic: str = "prompt-to-video-dispatch"
    group_id: str = "prompt2video-consumer"
    progress_topic: str = "prompt-to-video-progress"
    result_topic: str = "prompt-to-video-result"


class LoggingConfig(BaseModel):
    """Root logger configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: PROMPTVID_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="PROMPTVID_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    services: ServicesConfig = ServicesConfig()
    pipeline: PipelineConfig = PipelineConfig()
    presentation: PresentationConfig = PresentationConfig()
    storage: StorageConfig = StorageConfig()
    bus: BusConfig = BusConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (explicit keyword arguments)
        2. Environment variables
        3. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Singleton instance
settings = Settings()
