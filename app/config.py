from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Zoom server-to-server OAuth app
    ZOOM_ACCOUNT_ID: str | None = None
    ZOOM_CLIENT_ID: str | None = None
    ZOOM_CLIENT_SECRET: str | None = None
    ZOOM_WEBHOOK_SECRET_TOKEN: str | None = None

    ZOOM_OAUTH_URL: str = "https://zoom.us/oauth/token"
    ZOOM_API_BASE_URL: str = "https://api.zoom.us/v2"
    ZOOM_OAUTH_GRANT_TYPE: str = "account_credentials"
    ACCESS_TOKEN_TTL_SECONDS: int = 3600

    # Optional shared cache; in-memory stores are used when unset
    REDIS_URL: str | None = None

    # =================================================================
    # PARTICIPANT REPORT SETTINGS
    # =================================================================
    REPORT_PAGE_SIZE: int = 300
    REPORT_FETCH_ALL_PAGES: bool = True
    REPORT_MAX_PAGES: int = 20

    RAW_REPORT_DIR: str = "/app/downloads"
    PARTICIPANTS_CSV_DIR: str = "/app/savedCsv"
    PROCESSED_CSV_DIR: str = "/app/csvProcessed"

    # Attendance thresholds, both in minutes
    LATE_CUTOFF_MINUTES: int = 10
    PARTICIPATION_CUTOFF_MINUTES: int = 90

    # =================================================================
    # NOTIFICATION SETTINGS
    # =================================================================
    NOTIFICATION_TRIGGER: Literal["direct", "watcher"] = "direct"
    WATCHER_POLL_INTERVAL_SECONDS: float = 2.0
    NOTIFICATION_DEDUP_TTL_SECONDS: int = 86400

    EMAIL_USER: str | None = None
    EMAIL_PASSWORD: str | None = None
    EMAIL_RECIPIENTS: str = ""
    EMAIL_SUBJECT: str = "New CSV Report Available"
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USE_TLS: bool = True

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def email_recipients(self) -> list[str]:
        """Distribution list parsed from the comma separated EMAIL_RECIPIENTS."""
        return [address.strip() for address in self.EMAIL_RECIPIENTS.split(",") if address.strip()]

    def report_directories(self) -> dict[str, Path]:
        return {
            "raw": Path(self.RAW_REPORT_DIR),
            "participants": Path(self.PARTICIPANTS_CSV_DIR),
            "processed": Path(self.PROCESSED_CSV_DIR),
        }

    def uses_watcher_delivery(self) -> bool:
        return self.NOTIFICATION_TRIGGER == "watcher"


settings = Settings()
