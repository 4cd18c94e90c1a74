from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Service settings.

    Notes:
    - Defaults are local and deterministic (SQLite file next to the repo).
    - Every field can be overridden with a `TASKHUB_`-prefixed env var.
    """

    model_config = SettingsConfigDict(env_prefix="TASKHUB_", extra="ignore")

    db_url: str | None = None
    permission_matrix_path: str | None = None
    log_level: str = "INFO"

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # Transaction runner (cascade deletes / restores)
    tx_max_attempts: int = 5
    tx_base_delay_seconds: float = 0.05
    tx_max_delay_seconds: float = 1.0
    tx_timeout_seconds: float = 10.0
    # Invariant checks read other rows; weaker levels allow write skew between two cascades.
    tx_isolation_level: str | None = "SERIALIZABLE"

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "taskhub.db"
        return f"sqlite:///{db_path}"

    def resolved_permission_matrix_path(self) -> Path:
        if self.permission_matrix_path:
            return Path(self.permission_matrix_path)

        repo_root = Path(__file__).resolve().parents[1]
        return repo_root / "config" / "permission_matrix.yaml"


@lru_cache
def get_settings() -> Settings:
    return Settings()
