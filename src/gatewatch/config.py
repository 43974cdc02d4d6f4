"""Configuration: hot-reloaded watcher document plus process settings.

Two layers:
- WatcherConfig: the JSON document on disk, owned by ConfigStore and
  editable at runtime (by the command loop, the dashboard or a text editor).
- AppSettings: process-level settings loaded once from the environment
  via pydantic-settings (paths, log level, dashboard bind address).
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_SCHEMA_VERSION = 1


class _Section(BaseModel):
    """Common model config for document sections.

    Sections are frozen: a published snapshot cannot be changed in place,
    only replaced through ConfigStore.save(). Non-finite floats are rejected
    because JSON has no spelling for them.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, allow_inf_nan=False)


class PollingConfig(_Section):
    """Poll cadence, lookback horizon and per-symbol history length."""

    interval_seconds: int = Field(default=5, ge=1)
    lookback_seconds: int = Field(default=20, ge=1)
    samples_window: int = Field(default=300, ge=2)  # raised to lookback steps + 1 if smaller
    eager_window_shrink: bool = False


class ThresholdsConfig(_Section):
    """Alert thresholds, in percentage points of 24h change."""

    increase_percent: float = Field(default=20.0, ge=0)
    decrease_percent: float = Field(default=20.0, ge=0)


class FiltersConfig(_Section):
    """Which pairs take part in windowing, ranking and alerting.

    Empty include list means every pair; empty quote list means any quote.
    """

    include_symbols: tuple[str, ...] = ()
    exclude_symbols: tuple[str, ...] = ()
    allowed_quote_currencies: tuple[str, ...] = ("USDT",)
    min_quote_volume_24h: float = Field(default=10_000.0, ge=0)
    min_base_volume_24h: float = Field(default=0.0, ge=0)
    new_only: bool = False
    new_since_days: int = Field(default=7, ge=1)


class ConsoleChannelConfig(_Section):
    enabled: bool = True


class TelegramChannelConfig(_Section):
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.bot_token.strip()) and bool(self.chat_id.strip())


class NotificationsConfig(_Section):
    console: ConsoleChannelConfig = Field(default_factory=ConsoleChannelConfig)
    telegram: TelegramChannelConfig = Field(default_factory=TelegramChannelConfig)


class DataSourceConfig(_Section):
    base_url: str = "https://api.gateio.ws/api/v4"


class WatcherConfig(_Section):
    """Root of the configuration document.

    Instances are immutable snapshots. ConfigStore.save() hands mutations a
    draft copy and validates the result into a new instance.
    """

    version: int = CONFIG_SCHEMA_VERSION
    polling: PollingConfig = Field(default_factory=PollingConfig)
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    filters: FiltersConfig = Field(default_factory=FiltersConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    data_source: DataSourceConfig = Field(default_factory=DataSourceConfig)


class DashboardSettings(BaseSettings):
    """Dashboard server configuration."""

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")

    host: str = "127.0.0.1"
    port: int = 8080
    enabled: bool = True


class HttpSettings(BaseSettings):
    """Outbound HTTP behaviour for the exchange client and notifiers."""

    model_config = SettingsConfigDict(env_prefix="HTTP_")

    timeout_seconds: float = 15.0
    notify_max_retries: int = 3
    notify_initial_backoff: float = 0.5
    notify_max_backoff: float = 8.0


class AppSettings(BaseSettings):
    """Root process settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_prefix="WATCHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_format: str | None = None  # "json" or "console"; falls back to LOG_FORMAT
    config_path: str = "appsettings.json"
    csv_dir: str = "data"
    interactive: bool = True
    pair_refresh_seconds: float = 600.0
    dashboard: DashboardSettings = DashboardSettings()
    http: HttpSettings = HttpSettings()
