# app/config.py
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # App
    APP_ENV: Literal["dev", "prod", "staging"] = "dev"
    TZ: str = "Africa/Lagos"

    # LLM (any OpenAI-compatible endpoint)
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://api.deepinfra.com/v1/openai"
    LLM_MODEL: str = "zai-org/GLM-4.5-Air"
    LLM_TEMPERATURE: float = 0.1
    CHAT_MAX_STEPS: int = 10

    # Amadeus
    AMADEUS_CLIENT_ID: str = ""
    AMADEUS_CLIENT_SECRET: str = ""
    AMADEUS_BASE_URL: str = "https://test.api.amadeus.com"
    AMADEUS_TOKEN_REFRESH_BUFFER_SECONDS: int = 300
    AMADEUS_MAX_RETRIES: int = 3
    AMADEUS_CONNECT_TIMEOUT: float = 3.0
    AMADEUS_READ_TIMEOUT: float = 25.0
    REQUEST_DEADLINE_SECONDS: float = 30.0

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    FLIGHT_OFFERS_TTL_SECONDS: int = 1800  # 30 minutes
    FLIGHT_OFFERS_KEY_PREFIX: str = "ngabroad:flight-offers:"
    FLIGHT_OFFERS_COOKIE: str = "flight_offers_key"

    # Flight search defaults
    DEFAULT_CURRENCY: str = "NGN"
    DEFAULT_MAX_OFFERS: int = 50

    # MongoDB (programs catalog)
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "NGabroad"
    PROGRAMS_PAGE_SIZE: int = 8

    RATE_LIMIT_PER_MINUTE: int = 60

    # read .env and ignore any extra keys so this doesn't break again
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
