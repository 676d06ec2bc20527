"""
Centralized configuration using Pydantic Settings.

All environment variables are loaded and validated here. A Settings instance
is built once at startup and handed to the components through AppContext.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from inbox_triage.core.models import Dependency


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # State file
    state_path: str = "data/state.json"

    # Polling
    poll_interval_seconds: int = Field(default=60, ge=1)
    poll_max_results: int = Field(default=20, ge=1)
    poll_query: str = "UNSEEN"

    # Admission queue / worker pool
    llm_queue_capacity: int = Field(default=20, ge=1)
    llm_concurrency: int = Field(default=2, ge=1)
    llm_timeout_seconds: float = Field(default=60.0, gt=0)

    # LLM endpoint (OpenAI-compatible chat completions)
    llm_base_url: str = "http://localhost:11434/v1"
    llm_model: str = "llama3.1:8b"
    llm_api_key: str = ""
    prompt_path: str = "prompts/triage.txt"
    max_body_chars: int = Field(default=4000, ge=200)

    # Notifications (Twilio SMS)
    dry_run: bool = True
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_to_number: str = ""

    # Retention
    max_processed_ids: int = Field(default=5000, ge=1)
    max_recent_decisions: int = Field(default=200, ge=1)
    max_recent_sends: int = Field(default=100, ge=1)
    max_token_events: int = Field(default=100, ge=1)

    # Statistics
    tps_window: int = Field(default=5, ge=1)
    persist_debounce_seconds: float = Field(default=2.0, gt=0)

    # Health freshness windows, one per dependency
    health_mailbox_window_seconds: float = Field(default=300.0, gt=0)
    health_llm_window_seconds: float = Field(default=900.0, gt=0)
    health_notifier_window_seconds: float = Field(default=86400.0, gt=0)
    health_probe_interval_seconds: int = Field(default=120, ge=1)

    # IMAP mailbox
    imap_host: str = "imap.gmail.com"
    imap_user: str = ""
    imap_password: str = ""
    imap_folder: str = "INBOX"
    # Web-mail URL prefix for opening a message by its Message-ID; empty disables links
    mail_link_base: str = "https://mail.google.com/mail/u/0/#search/rfc822msgid:"

    # Scheduler
    scheduler_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Status view
    status_recent_limit: int = Field(default=20, ge=1)

    @model_validator(mode="after")
    def check_queue_bounds(self) -> "Settings":
        if self.llm_queue_capacity <= self.llm_concurrency:
            raise ValueError(
                "LLM_QUEUE_CAPACITY must be greater than LLM_CONCURRENCY "
                f"(got {self.llm_queue_capacity} <= {self.llm_concurrency})"
            )
        return self

    def health_window(self, dependency: Dependency) -> float:
        """Freshness window in seconds for a dependency."""
        windows = {
            Dependency.MAILBOX: self.health_mailbox_window_seconds,
            Dependency.LLM: self.health_llm_window_seconds,
            Dependency.NOTIFIER: self.health_notifier_window_seconds,
        }
        return windows[dependency]

    @property
    def twilio_configured(self) -> bool:
        """Check if all Twilio credentials and numbers are present."""
        return all([
            self.twilio_account_sid,
            self.twilio_auth_token,
            self.twilio_from_number,
            self.twilio_to_number,
        ])
