"""Configuration loading and validation.

Loads ``settings.toml`` and validates all fields at startup, before any
browser is launched.  A config failure halfway through a run, after two
sources have already logged in, is far more costly than a startup error.

The validated config is exposed as a :class:`Settings` dataclass with
typed fields for each section: ``sources``, ``orchestration``,
``browser``, ``server`` and ``output``.

Credentials never live in the TOML file — each source names the two
environment variables that hold them (``<SOURCE>_USERNAME`` /
``<SOURCE>_PASSWORD`` by default), typically populated from ``.env``.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from tradecar_search.errors import ActionableError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from tradecar_search.adapters.base import Credentials

# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialRef:
    """Names of the environment variables holding one source's login."""

    username_env: str
    password_env: str

    @classmethod
    def for_source(cls, source_name: str) -> CredentialRef:
        prefix = source_name.upper()
        return cls(username_env=f"{prefix}_USERNAME", password_env=f"{prefix}_PASSWORD")

    def resolve(self, environ: Mapping[str, str] | None = None) -> Credentials | None:
        """Read the credentials, or ``None`` if either variable is unset or blank."""
        from tradecar_search.adapters.base import Credentials

        env = os.environ if environ is None else environ
        username = env.get(self.username_env, "").strip()
        password = env.get(self.password_env, "")
        if not username or not password:
            return None
        return Credentials(username=username, password=password)


@dataclass
class SourceConfig:
    """Per-source configuration from ``[sources.<name>]``."""

    name: str
    credentials: CredentialRef


@dataclass
class OrchestrationConfig:
    """Scheduling limits from ``[orchestration]``."""

    concurrency_limit: int = 2
    job_timeout_seconds: float | None = 300.0
    acquire_timeout_seconds: float = 30.0


@dataclass
class BrowserConfig:
    """Playwright launch settings from ``[browser]``."""

    headless: bool = True
    viewport_width: int = 1024
    viewport_height: int = 768
    user_agent: str | None = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    stealth: bool = False
    browser_channel: str | None = None
    launch_args: list[str] = field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-blink-features=AutomationControlled",
            "--disable-dev-shm-usage",
        ]
    )


@dataclass
class ServerConfig:
    """HTTP transport settings from ``[server]``."""

    host: str = "0.0.0.0"
    port: int = 3001
    cancel_on_disconnect: bool = False


@dataclass
class OutputConfig:
    """Output settings from ``[output]``."""

    output_dir: str = "./output"
    log_dir: str = "data/logs"


@dataclass
class Settings:
    """Top-level validated configuration."""

    enabled_sources: list[str]
    sources: dict[str, SourceConfig]
    orchestration: OrchestrationConfig = field(default_factory=OrchestrationConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


# ---------------------------------------------------------------------------
# Default settings path
# ---------------------------------------------------------------------------

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")


# ---------------------------------------------------------------------------
# Loading and validation
# ---------------------------------------------------------------------------


def load_settings(path: str | Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """Load and validate settings from a TOML file.

    Raises :class:`~tradecar_search.errors.ActionableError`:
      - CONFIG if the file is missing, malformed, or a required field is absent
      - VALIDATION if field values are out of range

    Returns a fully validated :class:`Settings` instance.
    """
    filepath = Path(path)
    if not filepath.exists():
        raise ActionableError.config(
            field_name="settings_path",
            reason=f"Settings file not found: {filepath}",
            suggestion=f"Create {filepath} or copy from config/settings.toml in the repository",
        )

    raw_text = filepath.read_text(encoding="utf-8")
    try:
        data = tomllib.loads(raw_text)
    except tomllib.TOMLDecodeError as exc:
        raise ActionableError.config(
            field_name="settings_path",
            reason=f"Malformed TOML: {exc}",
            suggestion=f"Fix TOML syntax in {filepath}",
        ) from None

    return validate_settings(data, filepath)


def validate_settings(data: dict[str, object], filepath: Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """Validate raw TOML data and return a Settings instance."""

    # -- sources section -----------------------------------------------------
    sources_section = _require_section(data, "sources", filepath)
    enabled = sources_section.get("enabled")
    if not isinstance(enabled, list) or not enabled:
        raise ActionableError.config(
            field_name="sources.enabled",
            reason="sources.enabled must be a non-empty list of source names",
            suggestion="Add at least one source name to [sources].enabled",
        )
    if len(set(enabled)) != len(enabled):
        raise ActionableError.config(
            field_name="sources.enabled",
            reason="source names must be unique",
            suggestion="Remove the duplicate entries from [sources].enabled",
        )

    source_configs: dict[str, SourceConfig] = {}
    for source_name in enabled:
        if not isinstance(source_name, str) or not source_name:
            raise ActionableError.config(
                field_name="sources.enabled",
                reason=f"{source_name!r} is not a valid source name",
            )
        source_data = sources_section.get(source_name, {})
        if not isinstance(source_data, dict):
            raise ActionableError.config(
                field_name=f"sources.{source_name}",
                reason=f"[sources.{source_name}] must be a table, not {type(source_data).__name__}",
                suggestion=f"Define [sources.{source_name}] as a TOML table",
            )
        default_ref = CredentialRef.for_source(source_name)
        source_configs[source_name] = SourceConfig(
            name=source_name,
            credentials=CredentialRef(
                username_env=str(source_data.get("username_env", default_ref.username_env)),
                password_env=str(source_data.get("password_env", default_ref.password_env)),
            ),
        )

    # -- orchestration section -----------------------------------------------
    orch_data = _optional_section(data, "orchestration")
    raw_timeout = orch_data.get("job_timeout_seconds", 300.0)
    orchestration = OrchestrationConfig(
        concurrency_limit=_as_int(orch_data.get("concurrency_limit", 2), "orchestration.concurrency_limit"),
        job_timeout_seconds=None if raw_timeout in (0, None) else float(raw_timeout),  # type: ignore[arg-type]
        acquire_timeout_seconds=float(orch_data.get("acquire_timeout_seconds", 30.0)),  # type: ignore[arg-type]
    )
    if orchestration.concurrency_limit < 1:
        raise ActionableError.validation(
            field_name="orchestration.concurrency_limit",
            reason=f"is {orchestration.concurrency_limit} — must be >= 1",
            suggestion="Set [orchestration].concurrency_limit to a small positive number such as 2",
        )
    if orchestration.job_timeout_seconds is not None and orchestration.job_timeout_seconds < 0:
        raise ActionableError.validation(
            field_name="orchestration.job_timeout_seconds",
            reason=f"is {orchestration.job_timeout_seconds} — must be >= 0 (0 disables)",
        )
    if orchestration.acquire_timeout_seconds <= 0:
        raise ActionableError.validation(
            field_name="orchestration.acquire_timeout_seconds",
            reason=f"is {orchestration.acquire_timeout_seconds} — must be > 0",
        )

    # -- browser section -----------------------------------------------------
    browser_data = _optional_section(data, "browser")
    defaults = BrowserConfig()
    launch_args = browser_data.get("launch_args", defaults.launch_args)
    if not isinstance(launch_args, list):
        raise ActionableError.config(
            field_name="browser.launch_args",
            reason="must be a list of command-line flags",
        )
    browser = BrowserConfig(
        headless=bool(browser_data.get("headless", defaults.headless)),
        viewport_width=_as_int(browser_data.get("viewport_width", defaults.viewport_width), "browser.viewport_width"),
        viewport_height=_as_int(
            browser_data.get("viewport_height", defaults.viewport_height), "browser.viewport_height"
        ),
        user_agent=browser_data.get("user_agent", defaults.user_agent) or None,  # type: ignore[arg-type]
        stealth=bool(browser_data.get("stealth", defaults.stealth)),
        browser_channel=browser_data.get("browser_channel") or None,  # type: ignore[arg-type]
        launch_args=[str(arg) for arg in launch_args],
    )

    # -- server section ------------------------------------------------------
    server_data = _optional_section(data, "server")
    server = ServerConfig(
        host=str(server_data.get("host", "0.0.0.0")),
        port=_as_int(server_data.get("port", 3001), "server.port"),
        cancel_on_disconnect=bool(server_data.get("cancel_on_disconnect", False)),
    )
    if not 0 < server.port < 65536:
        raise ActionableError.validation(
            field_name="server.port",
            reason=f"is {server.port} — must be between 1 and 65535",
        )

    # -- output section ------------------------------------------------------
    output_data = _optional_section(data, "output")
    output = OutputConfig(
        output_dir=str(output_data.get("output_dir", "./output")),
        log_dir=str(output_data.get("log_dir", "data/logs")),
    )

    return Settings(
        enabled_sources=list(enabled),
        sources=source_configs,
        orchestration=orchestration,
        browser=browser,
        server=server,
        output=output,
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _require_section(data: dict[str, object], name: str, filepath: Path) -> dict[str, object]:
    """Return a required top-level section, or raise CONFIG error."""
    section = data.get(name)
    if section is None or not isinstance(section, dict):
        raise ActionableError.config(
            field_name=name,
            reason=f"Required section [{name}] is missing from {filepath}",
            suggestion=f"Add a [{name}] section to {filepath}",
        )
    return section


def _optional_section(data: dict[str, object], name: str) -> dict[str, object]:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def _as_int(value: object, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ActionableError.validation(field_name, f"must be a whole number, got {value!r}")
    try:
        return int(value)
    except ValueError:
        raise ActionableError.validation(field_name, f"must be a whole number, got {value!r}") from None
