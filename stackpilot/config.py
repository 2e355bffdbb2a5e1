"""Runtime configuration: env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
STACKPILOT_* environment variables. Per-environment infrastructure values
(project id, region, database mode) are NOT here; they live in
``environments/<env>/stack.toml`` and are read by the resolver.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export STACKPILOT_LOG_LEVEL=DEBUG
        export STACKPILOT_STATE_BACKEND=local
        export STACKPILOT_READINESS_MAX_ATTEMPTS=5

    Or via .env file::

        STACKPILOT_LOCK_DURING_PLAN=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="STACKPILOT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Local workspace
    workspace_path: Path = Path(".stackpilot")
    artifact_store_path: Path = Path(".stackpilot/artifacts")
    ledger_path: Path = Path(".stackpilot/ledger.db")
    environments_path: Path = Path("environments")
    source_path: Path = Path("src")
    outputs_file: Path = Path("env_vars.env")

    # State backend: "s3" (object store + lock table) or "local" (filesystem)
    state_backend: str = "s3"
    local_state_path: Path = Path(".stackpilot/state")

    # Readiness wait for the backing store (60 x 10s = 10 minutes)
    readiness_max_attempts: int = 60
    readiness_delay_seconds: float = 10.0

    # Schema initialization invocation
    init_max_attempts: int = 5
    init_delay_seconds: float = 30.0

    # Planning reads state without taking the lock unless enabled
    lock_during_plan: bool = False

    # Parallel unit builds
    build_workers: int = 4

    # AWS
    aws_endpoint_url: str | None = None
    resource_wait_delay_seconds: int = 5
    resource_wait_max_attempts: int = 120

    @property
    def uses_local_state(self) -> bool:
        """Whether state and locks live on the local filesystem."""
        return self.state_backend == "local"


# Module-level singleton. Import as `from stackpilot.config import config`
config = Settings()
