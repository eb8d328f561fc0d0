from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for cascading group deletes under RLS

    # Storage buckets
    storage_files_bucket: str = "group-files"
    storage_avatars_bucket: str = "group-avatars"

    # Chat
    chat_cache_ttl_seconds: float = 300.0
    chat_cache_max_entries: int = 50
    chat_history_limit: int = 100
    chat_preview_length: int = 50
    realtime_attach_timeout: float = 10.0

    # Groups
    invite_code_length: int = 6

    # AI assistant
    gemini_api_key: Optional[str] = None  # Assistant answers 503 until set
    gemini_model: str = "gemini-3-flash-preview"
    ai_fetch_timeout: float = 30.0

    # App
    app_name: str = "studious-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
