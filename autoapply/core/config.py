import os
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuration class for environment variables and service settings.
    """
    # Service settings
    service_name: str = os.getenv("SERVICE_NAME", "autoapply")
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"
    hostname: str = os.getenv("HOSTNAME", "unknown")

    # Logging settings
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "False").lower() == "true"
    # Only WARNING and above are shipped to Datadog unless told otherwise
    log_level_datadog: str = os.getenv("LOGLEVEL_DATADOG", "WARNING")

    # Matching settings
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "1536"))
    similarity_threshold: float = float(os.getenv("SIMILARITY_THRESHOLD", "0.7"))
    top_n_jobs: int = int(os.getenv("TOP_N_JOBS", "10"))
    top_n_candidates: int = int(os.getenv("TOP_N_CANDIDATES", "50"))
    candidate_pool_limit: int = int(os.getenv("CANDIDATE_POOL_LIMIT", "1000"))

    # Auto-apply defaults, used when a candidate has no preference row
    default_auto_apply_enabled: bool = os.getenv("DEFAULT_AUTO_APPLY_ENABLED", "True").lower() == "true"
    default_auto_apply_min_score: int = int(os.getenv("DEFAULT_AUTO_APPLY_MIN_SCORE", "70"))
    default_max_applications_per_day: int = int(os.getenv("DEFAULT_MAX_APPLICATIONS_PER_DAY", "5"))
    submission_delay_ms: int = int(os.getenv("SUBMISSION_DELAY_MS", "100"))
    quota_timezone: str = os.getenv("QUOTA_TIMEZONE", "UTC")

    # Batch run settings
    candidate_page_size: int = int(os.getenv("CANDIDATE_PAGE_SIZE", "50"))
    candidate_concurrency: int = int(os.getenv("CANDIDATE_CONCURRENCY", "4"))
    stale_run_after_minutes: int = int(os.getenv("STALE_RUN_AFTER_MINUTES", "180"))
    cache_matches: bool = os.getenv("CACHE_MATCHES", "False").lower() == "true"

    # Evaluation settings
    strategy_tie_band: float = float(os.getenv("STRATEGY_TIE_BAND", "0.01"))
    per_embedding_cost_usd: float = float(os.getenv("PER_EMBEDDING_COST_USD", "0.000002"))
    per_match_cost_usd: float = float(os.getenv("PER_MATCH_COST_USD", "0.00001"))

    # PostgreSQL settings
    database_url: str = os.getenv(
        "DATABASE_URL",
        "",
    )

    # Database connection pooling settings
    db_pool_min_size: int = int(os.getenv("DB_POOL_MIN_SIZE", "2"))
    db_pool_max_size: int = int(os.getenv("DB_POOL_MAX_SIZE", "10"))
    db_pool_timeout: float = float(os.getenv("DB_POOL_TIMEOUT", "30.0"))
    db_pool_max_idle: int = int(os.getenv("DB_POOL_MAX_IDLE", "300"))
    db_pool_max_lifetime: int = int(os.getenv("DB_POOL_MAX_LIFETIME", "3600"))
    store_retry_attempts: int = int(os.getenv("STORE_RETRY_ATTEMPTS", "3"))

    # Metrics settings
    metrics_enabled: bool = os.getenv("METRICS_ENABLED", "False").lower() == "true"
    metrics_prefix: str = os.getenv("METRICS_PREFIX", "autoapply")
    metrics_sample_rate: float = float(os.getenv("METRICS_SAMPLE_RATE", "1.0"))
    metrics_host: str = os.getenv("METRICS_HOST", "127.0.0.1")
    metrics_port: int = int(os.getenv("METRICS_PORT", "8125"))
    datadog_api_key: str = os.getenv("DD_API_KEY", "")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()

__all__ = ["Settings", "settings"]
