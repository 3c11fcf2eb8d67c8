from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Travel data providers (empty key = provider reports a failure)
    AMADEUS_CLIENT_ID: str = ""
    AMADEUS_CLIENT_SECRET: str = ""
    AMADEUS_HOSTNAME: str = "test"

    SERPAPI_KEY: str = ""

    SKYSCANNER_API_KEY: str = ""
    SKYSCANNER_BASE_URL: str = "https://partners.api.skyscanner.net"
    SKYSCANNER_MARKET: str = "US"
    SKYSCANNER_LOCALE: str = "en-US"

    DEFAULT_FLIGHT_PROVIDERS: list[str] = ["amadeus", "skyscanner"]
    DEFAULT_HOTEL_PROVIDERS: list[str] = ["amadeus", "serpapi"]

    # AI Config
    AI_PROVIDER: str = "openai" # or "gemini" (chat completions only)
    OPENAI_API_KEY: str = ""
    GOOGLE_API_KEY: str = ""
    OPENAI_CHAT_MODEL: str = "gpt-4o"
    OPENAI_VISION_MODEL: str = "gpt-4o"
    OPENAI_TRANSCRIBE_MODEL: str = "whisper-1"
    OPENAI_TTS_MODEL: str = "tts-1-hd"
    GEMINI_MODEL: str = "gemini-1.5-flash-latest"

    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Timeouts (seconds)
    PROVIDER_TIMEOUT_SECONDS: float = 12.0
    AI_TIMEOUT_SECONDS: float = 60.0

    # Result cache
    CACHE_TTL_SECONDS: int = 900
    CACHE_MAX_ENTRIES: int = 256

    # Multimodal planning
    MAX_UPLOAD_MB: int = 50
    TRIP_SUGGESTION_FANOUT: int = 3
    MAX_MATCHING_DESTINATIONS: int = 8

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

settings = Settings()
