"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
SECRET_KEY_FILE = BASE_DIR / ".jwt_secret"
DEFAULT_SQLITE_PATH = BASE_DIR / "database.db"
DEFAULT_CORS_ORIGIN = "http://localhost:5173"
DEFAULT_PORT = 5000


def _get_env_int(environ: Mapping[str, str], name: str, default: Optional[int] = None) -> Optional[int]:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from exc


def _split_origins(raw: str) -> List[str]:
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or [DEFAULT_CORS_ORIGIN]


def load_jwt_secret(environ: Mapping[str, str], secret_file: Path = SECRET_KEY_FILE) -> str:
    env_secret = (environ.get("JWT_SECRET") or "").strip()
    if env_secret:
        return env_secret

    try:
        if secret_file.exists():
            stored_secret = secret_file.read_text(encoding="utf-8").strip()
            if stored_secret:
                logger.warning(
                    "JWT_SECRET environment variable not set; using fallback value stored in %s.",
                    secret_file,
                )
                return stored_secret
    except OSError as exc:
        logger.warning(
            "JWT_SECRET environment variable not set; failed to read fallback file %s: %s",
            secret_file,
            exc,
        )

    generated_secret = secrets.token_hex(32)
    try:
        secret_file.write_text(generated_secret, encoding="utf-8")
        try:
            os.chmod(secret_file, 0o600)
        except OSError:
            pass
        logger.warning(
            "JWT_SECRET environment variable not set; generated a new secret and stored it in %s.",
            secret_file,
        )
    except OSError as exc:
        logger.warning(
            "JWT_SECRET environment variable not set; generated an ephemeral secret and could not persist it to %s: %s",
            secret_file,
            exc,
        )
    return generated_secret


@dataclass
class Settings:
    """Everything the service reads from its environment."""

    jwt_secret: str
    port: int = DEFAULT_PORT
    host: str = "0.0.0.0"
    cors_origins: List[str] = field(default_factory=lambda: [DEFAULT_CORS_ORIGIN])
    sqlite_path: Path = DEFAULT_SQLITE_PATH
    db_host: Optional[str] = None
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_port: Optional[int] = None
    db_connect_timeout: Optional[int] = None
    log_level: str = "INFO"

    @property
    def use_sqlite(self) -> bool:
        return not all([self.db_host, self.db_name, self.db_user, self.db_password])

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            environ = os.environ
        sqlite_raw = (environ.get("SQLITE_PATH") or "").strip()
        return cls(
            jwt_secret=load_jwt_secret(environ),
            port=_get_env_int(environ, "PORT", DEFAULT_PORT),
            host=(environ.get("HOST") or "0.0.0.0").strip(),
            cors_origins=_split_origins(environ.get("CORS_ORIGIN") or ""),
            sqlite_path=Path(sqlite_raw) if sqlite_raw else DEFAULT_SQLITE_PATH,
            db_host=environ.get("DB_HOST") or None,
            db_name=environ.get("DB_NAME") or None,
            db_user=environ.get("DB_USER") or None,
            db_password=environ.get("DB_PASS") or None,
            db_port=_get_env_int(environ, "DB_PORT"),
            db_connect_timeout=_get_env_int(environ, "DB_CONNECT_TIMEOUT"),
            log_level=(environ.get("LOG_LEVEL") or "INFO").strip().upper(),
        )
