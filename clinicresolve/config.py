"""
Runtime configuration read from the environment.

Call ``env.load_env()`` first when a .env file should be honoured.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

DEFAULT_BASE_URLS = ["http://localhost:5000", "http://127.0.0.1:5000"]
DATE_ORDERS = ("DMY", "MDY")


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer number of milliseconds, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


@dataclass
class Settings:
    base_urls: List[str] = field(default_factory=lambda: list(DEFAULT_BASE_URLS))
    probe_timeout_ms: int = 6000
    source_timeout_ms: int = 7000
    date_order: str = "DMY"
    hint_store: Path = Path("data/hints.json")
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    @property
    def day_first(self) -> bool:
        return self.date_order == "DMY"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from CLINIC_* variables, validating as we go."""
        env = os.environ if env is None else env

        urls_raw = env.get("CLINIC_API_BASE_URLS", "")
        base_urls = [u.strip().rstrip("/") for u in urls_raw.split(",") if u.strip()]

        date_order = env.get("CLINIC_DATE_ORDER", "DMY").strip().upper()
        if date_order not in DATE_ORDERS:
            raise ValueError(f"CLINIC_DATE_ORDER must be one of {', '.join(DATE_ORDERS)}, got {date_order!r}")

        return cls(
            base_urls=base_urls or list(DEFAULT_BASE_URLS),
            probe_timeout_ms=_int_env(env, "CLINIC_PROBE_TIMEOUT_MS", 6000),
            source_timeout_ms=_int_env(env, "CLINIC_SOURCE_TIMEOUT_MS", 7000),
            date_order=date_order,
            hint_store=Path(env.get("CLINIC_HINT_STORE", "data/hints.json")),
            log_level=env.get("CLINIC_LOG_LEVEL", "INFO").upper(),
            log_dir=Path(env.get("CLINIC_LOG_DIR", "logs")),
        )
