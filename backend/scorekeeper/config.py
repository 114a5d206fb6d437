from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# FCM rejects multicast requests above this many tokens.
FCM_MULTICAST_LIMIT = 500


class Settings(BaseSettings):
    firebase_project_id: Optional[str] = Field(None, env="FIREBASE_PROJECT_ID")
    # File path, raw JSON or base64 JSON. Empty means application default credentials.
    firebase_service_account_path: Optional[str] = Field(
        None, env="FIREBASE_SERVICE_ACCOUNT_PATH"
    )
    firebase_app_name: str = Field("scorekeeper", env="FIREBASE_APP_NAME")

    admin_uids: str = Field("", env="ADMIN_UIDS")
    log_level: str = Field("INFO", env="LOG_LEVEL")

    dispatch_batch_size: int = Field(FCM_MULTICAST_LIMIT, env="DISPATCH_BATCH_SIZE")
    dispatch_max_workers: int = Field(1, env="DISPATCH_MAX_WORKERS")
    audience_count_total_users: bool = Field(True, env="AUDIENCE_COUNT_TOTAL_USERS")

    schedule_poll_interval_minutes: int = Field(5, env="SCHEDULE_POLL_INTERVAL_MINUTES")
    schedule_poll_max_entries: int = Field(10, env="SCHEDULE_POLL_MAX_ENTRIES")
    schedule_list_limit: int = Field(50, env="SCHEDULE_LIST_LIMIT")
    schedule_allow_cancel_processed: bool = Field(
        True, env="SCHEDULE_ALLOW_CANCEL_PROCESSED"
    )
    enable_schedule_poller: bool = Field(True, env="ENABLE_SCHEDULE_POLLER")
    enable_admin_notification_watch: bool = Field(
        True, env="ENABLE_ADMIN_NOTIFICATION_WATCH"
    )

    update_topic: str = Field("app_updates_beta", env="UPDATE_TOPIC")
    update_notification_title: str = Field(
        "🚀 New Update Available!", env="UPDATE_NOTIFICATION_TITLE"
    )

    premium_stub_verifier_enabled: bool = Field(
        False, env="PREMIUM_STUB_VERIFIER_ENABLED"
    )
    premium_stub_period_days: int = Field(30, env="PREMIUM_STUB_PERIOD_DAYS")
    security_violation_threshold: int = Field(3, env="SECURITY_VIOLATION_THRESHOLD")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def admin_uid_set(self) -> set[str]:
        return {uid.strip() for uid in self.admin_uids.split(",") if uid.strip()}

    @property
    def effective_batch_size(self) -> int:
        return max(1, min(self.dispatch_batch_size, FCM_MULTICAST_LIMIT))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
