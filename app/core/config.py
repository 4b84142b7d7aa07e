from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    SUPABASE_URL: str
    SUPABASE_SERVICE_KEY: str
    SUPABASE_ANON_KEY: str

    RECEIPTS_BUCKET: str = "receipts"
    RECEIPTS_TABLE: str = "receipts"

    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str | None = None
    VISION_MODEL: str = "gpt-4o-mini"
    VISION_TIMEOUT_SECONDS: float = 60.0

    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024
    CAPTURE_IDLE_SECONDS: float = 30 * 60
    EXPORT_TIMEZONE: str = "UTC"

    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    @property
    def RECEIPTS_PUBLIC_URL(self) -> str:
        return f"{self.SUPABASE_URL}/storage/v1/object/public/{self.RECEIPTS_BUCKET}/"

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )


settings = Settings()
