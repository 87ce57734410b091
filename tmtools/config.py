"""Runtime settings loaded from the environment."""

from dataclasses import dataclass
import os
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    base_dir: str
    instance_url: Optional[str]
    access_token: Optional[str]
    username: Optional[str]
    alias: Optional[str]
    login_url: str
    api_version: str
    max_concurrency: int
    max_rate_limit_retries: int
    retry_backoff_seconds: float
    poll_interval_seconds: float
    poll_timeout_seconds: float
    log_level: str


def get_settings() -> Settings:
    return Settings(
        base_dir=os.getenv("TMTOOLS_BASE_DIR", "./tm-tools-output"),
        instance_url=os.getenv("SF_INSTANCE_URL"),
        access_token=os.getenv("SF_ACCESS_TOKEN"),
        username=os.getenv("SF_USERNAME"),
        alias=os.getenv("SF_ALIAS"),
        login_url=os.getenv("SF_LOGIN_URL", "https://login.salesforce.com"),
        api_version=os.getenv("SF_API_VERSION", "59.0"),
        max_concurrency=int(os.getenv("MAX_CONCURRENCY", "4")),
        max_rate_limit_retries=int(os.getenv("MAX_RATE_LIMIT_RETRIES", "3")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "2")),
        poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "5")),
        poll_timeout_seconds=float(os.getenv("POLL_TIMEOUT_SECONDS", "600")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
