"""Global configuration management using pydantic-settings.

Every runtime knob of the rate collector is read from environment variables
(or a local ``.env`` file) and validated once at startup. The cached
``get_config()`` accessor keeps a single configuration object for the whole
process lifetime.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/145.0.0.0 Safari/537.36"
)

# Requests the protected source may issue in one cycle: proxy, landing visit,
# challenge resource, landing revisit, data call, then the browser's
# navigation and data request.
PROTECTED_CHAIN_REQUESTS = 7


class GlobalConfig(BaseSettings):
    """Centralized configuration with environment variable binding.

    Attributes:
        app_name: Application identifier for logging.
        environment: Deployment environment.
        debug: Enable verbose debugging output (loguru backtrace/diagnose).
        log_level: Minimum log level for output filtering.
        log_dir: Directory path for structured JSON log files.
        log_rotation: Log file rotation interval.
        log_retention: Log file retention period.
        database_url: SQLAlchemy URL of the rate store.
        update_interval_minutes: Pause between the end of one cycle and the
            start of the next.
        request_timeout_ms: Timeout applied to every single HTTP request.
        source_timeout_ms: Upper bound for one source's whole acquisition
            chain within a cycle. Must cover the protected source's
            full fallback chain (see ``protected_chain_budget_ms``).
        challenge_delay_ms: Pause after fetching the WAF challenge resource.
        revisit_delay_ms: Pause after revisiting the landing page.
        popular_proxy_url: Operator-supplied URL that already returns the
            Banco Popular OData document, bypassing cookie replay.
        browser_executable_path: Local Chromium binary. Enables the headless
            browser fallback of the protected source when set.
        browser_headless: Run the fallback browser without a window.
        browser_state_path: File used to persist browser cookies between cycles.
        user_agent: Browser identity presented on every outbound request.
        enabled_sources: bankClass identifiers polled each cycle.
        stale_alert_cycles: Consecutive failed cycles before a source is
            reported as stale.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Metadata
    app_name: str = Field(default="dollar-rates", description="Application identifier")
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum log level"
    )
    log_dir: Path = Field(default=Path("logs"), description="Log output directory")
    log_rotation: str = Field(default="1 week", description="Log rotation interval")
    log_retention: str = Field(default="1 month", description="Log retention period")

    # Persistence
    database_url: str = Field(
        default="sqlite:///dollar_rates.db", description="SQLAlchemy database URL"
    )

    # Scheduling
    update_interval_minutes: int = Field(
        default=30, ge=1, le=1440, description="Minutes between update cycles"
    )

    # Network Resilience
    request_timeout_ms: int = Field(
        default=20000, ge=1000, le=120000, description="Per-request timeout in milliseconds"
    )
    source_timeout_ms: int = Field(
        default=150000, ge=1000, le=600000, description="Per-source chain timeout in milliseconds"
    )
    challenge_delay_ms: int = Field(
        default=500, ge=0, le=10000, description="Delay after the WAF challenge request"
    )
    revisit_delay_ms: int = Field(
        default=300, ge=0, le=10000, description="Delay after revisiting the landing page"
    )

    # Protected Source Overrides
    popular_proxy_url: str | None = Field(
        default=None, description="Proxy URL returning the Banco Popular rates XML"
    )
    browser_executable_path: Path | None = Field(
        default=None, description="Chromium binary for the headless fallback"
    )
    browser_headless: bool = Field(default=True, description="Run fallback browser headless")
    browser_state_path: Path = Field(
        default=Path("browser_state.json"), description="Browser session state file"
    )

    # Request Identity
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="Outbound User-Agent")

    # Sources
    enabled_sources: list[str] = Field(
        default=["banreservas", "bhd", "popular"],
        description="bankClass identifiers polled every cycle",
    )
    stale_alert_cycles: int = Field(
        default=3, ge=1, le=1000, description="Failed cycles before a stale-source warning"
    )

    @field_validator("log_dir", "browser_state_path", mode="before")
    @classmethod
    def ensure_path(cls, value: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(value) if isinstance(value, str) else value

    @field_validator("popular_proxy_url", "browser_executable_path", mode="before")
    @classmethod
    def blank_as_none(cls, value: str | Path | None) -> str | Path | None:
        """Treat empty environment values as unset."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("popular_proxy_url")
    @classmethod
    def validate_proxy_url(cls, value: str | None) -> str | None:
        """Only absolute http(s) URLs can be used as proxy endpoints."""
        if value is not None and not value.startswith(("http://", "https://")):
            raise ValueError("popular_proxy_url must be an absolute http(s) URL")
        return value

    @field_validator("enabled_sources")
    @classmethod
    def normalize_sources(cls, value: list[str]) -> list[str]:
        """Lowercase and de-duplicate source identifiers, preserving order."""
        seen: list[str] = []
        for item in value:
            key = item.strip().lower()
            if key and key not in seen:
                seen.append(key)
        return seen

    @property
    def update_interval_sec(self) -> float:
        return self.update_interval_minutes * 60.0

    @property
    def protected_chain_budget_ms(self) -> int:
        """Worst-case duration of the protected source's full fallback chain."""
        return (
            PROTECTED_CHAIN_REQUESTS * self.request_timeout_ms
            + self.challenge_delay_ms
            + self.revisit_delay_ms
        )

    @model_validator(mode="after")
    def check_source_timeout(self) -> "GlobalConfig":
        """A source cap below the chain budget would cancel the last fallbacks."""
        if self.source_timeout_ms < self.protected_chain_budget_ms:
            raise ValueError(
                f"source_timeout_ms ({self.source_timeout_ms}) must be at least "
                f"{self.protected_chain_budget_ms} ms: {PROTECTED_CHAIN_REQUESTS} requests of "
                f"request_timeout_ms plus the challenge and revisit delays"
            )
        return self


@lru_cache(maxsize=1)
def get_config() -> GlobalConfig:
    """Retrieve the singleton GlobalConfig instance.

    Returns:
        GlobalConfig: The validated configuration instance.
    """
    return GlobalConfig()
