from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


def load_local_env_file(env_path: str = ".env") -> None:
    """Load key=value pairs from a local .env file into process env.

    Existing environment variables are preserved and not overwritten.
    """

    path = Path(env_path)
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")

        if key and key not in os.environ:
            os.environ[key] = value


def env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    try:
        return float(raw)
    except ValueError:
        return fallback


def env_str(name: str, fallback: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    return raw.strip()


@dataclass(slots=True)
class Settings:
    catalog_path: str | None = None
    behavior_log_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    preference_window: int = 50
    preferred_artist_limit: int = 5
    recommendation_count: int = 20
    seed_batch_size: int = 30
    replenish_batch_size: int = 30
    low_water_mark: int = 2
    retry_delay_seconds: float = 5.0
    stream_resolver: str = "catalog"
    spotify_market: str = "US"

    @classmethod
    def from_env(cls) -> Settings:
        defaults = cls()
        return cls(
            catalog_path=env_str("CATALOG_PATH"),
            behavior_log_path=env_str("BEHAVIOR_LOG_PATH"),
            host=env_str("HOST", defaults.host),
            port=env_int("PORT", defaults.port),
            log_level=env_str("LOG_LEVEL", defaults.log_level).upper(),
            preference_window=env_int("PREFERENCE_WINDOW", defaults.preference_window),
            preferred_artist_limit=env_int("PREFERRED_ARTIST_LIMIT", defaults.preferred_artist_limit),
            recommendation_count=env_int("RECOMMENDATION_COUNT", defaults.recommendation_count),
            seed_batch_size=env_int("SEED_BATCH_SIZE", defaults.seed_batch_size),
            replenish_batch_size=env_int("REPLENISH_BATCH_SIZE", defaults.replenish_batch_size),
            low_water_mark=env_int("LOW_WATER_MARK", defaults.low_water_mark),
            retry_delay_seconds=env_float("RETRY_DELAY_SECONDS", defaults.retry_delay_seconds),
            stream_resolver=env_str("STREAM_RESOLVER", defaults.stream_resolver).lower(),
            spotify_market=env_str("SPOTIFY_MARKET", defaults.spotify_market),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
