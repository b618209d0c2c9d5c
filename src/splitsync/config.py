from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./splitsync.db"
    api_base_url: str = "http://localhost:8080/api"
    api_token: str = ""
    api_timeout_seconds: float = 15.0
    user_id: int = 1  # local id of the signed-in user

    # Generic sync managers
    sync_interval_minutes: int = 15
    throttle_window_minutes: int = 5
    throttle_max_requests: int = 10
    sync_batch_size: int = 20
    sync_batch_pause_ms: int = 100
    recent_sync_threshold_ms: int = 5000
    rapid_update_threshold_ms: int = 2000
    retry_max_attempts: int = 3
    retry_initial_delay_ms: int = 1000
    retry_max_delay_ms: int = 5000
    retry_factor: float = 2.0
    sync_sequencing: str = "fail_fast"  # "fail_fast" or "continue_on_error"

    # Transaction feed quota
    feed_max_calls_per_day: int = 4
    feed_cooldown_minutes: int = 30
    feed_cache_duration_hours: int = 23
    feed_low_activity_start_hour: int = 0
    feed_low_activity_end_hour: int = 6
    feed_refresh_priority_threshold: float = 50.0
    feed_timezone: str = "UTC"
    feed_refresh_minutes: int = 60

    cache_cleanup_hour: int = 4
    network_check_timeout_seconds: float = 3.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "SPLITSYNC_"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
