from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Storage mode: "memory", "local" or "mongodb"
    STORAGE_MODE: str = "memory"

    # MongoDB Configuration (only needed if STORAGE_MODE=mongodb)
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "community_context_db"

    # Local JSON cache directory (only needed if STORAGE_MODE=local)
    LOCAL_CACHE_DIR: str = "data/cache"

    # Logging
    LOGGER: int = 20
    LOG_DIRECTORY: str = "logs"
    LOG_FILE: str = "community.log"

    # Provider Selection
    COMMUNITY_PROVIDER: str = "places"  # Options: places, knowledge

    # Google Places Configuration
    GOOGLE_PLACES_API_KEY: str = ""

    # Perplexity Configuration
    PERPLEXITY_API_KEY: str = ""
    PERPLEXITY_MODEL: str = "sonar"

    # Anthropic Configuration (city descriptions)
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-haiku-4-5-20251001"

    # uscities.csv (city, state_id, lat, lng, population, zips)
    CITY_DATASET_PATH: str = "data/uscities.csv"

    # Cache lifetimes
    COMMUNITY_CACHE_TTL_DAYS: int = 30
    POOL_REFRESH_DAYS: int = 14
    PLACE_DETAILS_TTL_DAYS: int = 90
    KNOWLEDGE_CACHE_TTL_DAYS: int = 90

    # Rotation
    ROTATION_REFRESH_CYCLES: int = 2

    # Budgets
    SEARCH_CALL_BUDGET: int = 60
    MAX_CONCURRENT_PROVIDER_CALLS: int = 8
    PROVIDER_TIMEOUT_SECONDS: float = 15.0
    PLACES_COST_PER_CALL_USD: float = 0.032

    model_config = SettingsConfigDict(
        # Look for .env in the current folder OR the parent folder
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
