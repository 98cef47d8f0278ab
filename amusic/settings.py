from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # AcoustID
    acoustid_api_key: str | None = None
    acoustid_api_url: str = "https://api.acoustid.org/v2/lookup"
    acoustid_timeout_seconds: float = 10.0

    # External tools (bare names resolve via PATH)
    fpcalc_bin_path: str = "fpcalc"
    rsgain_bin_path: str = "rsgain"
    ffmpeg_bin_path: str = "ffmpeg"
    command_timeout_seconds: float = 120.0

    # Processing
    default_concurrency: int = 4
    high_concurrency: int = 8

    # Encoding
    aac_bitrate: str = "256k"


settings = Settings()
