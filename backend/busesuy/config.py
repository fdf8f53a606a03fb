"""Environment-driven settings.

Read after load_dotenv() has run in main.py.
"""

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger("busesuy.config")

STM_TOKEN_URL = "https://mvdapi-auth.montevideo.gub.uy/token"
STM_API_BASE_URL = "https://api.montevideo.gub.uy/api/transportepublico"

DEFAULT_POLL_INTERVAL = 25.0
MIN_POLL_INTERVAL = 20.0
MAX_POLL_INTERVAL = 30.0

_PLACEHOLDERS = {"", "YOUR_CLIENT_ID_HERE", "YOUR_CLIENT_SECRET_HERE", "your-google-maps-key-here"}


@dataclass(frozen=True)
class StmCredential:
    client_id: str
    client_secret: str = field(repr=False)

    @property
    def masked_id(self) -> str:
        return f"...{self.client_id[-4:]}"


@dataclass(frozen=True)
class Settings:
    stm_credentials: tuple[StmCredential, ...] = ()
    google_maps_api_key: str = field(default="", repr=False)
    stm_token_url: str = STM_TOKEN_URL
    stm_api_base_url: str = STM_API_BASE_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    http_timeout: float = 10.0
    cors_origins: tuple[str, ...] = ("http://localhost:3000", "http://127.0.0.1:3000")


def _env(name: str) -> str:
    value = os.getenv(name, "").strip()
    return "" if value in _PLACEHOLDERS else value


def _load_credentials() -> tuple[StmCredential, ...]:
    creds = []
    client_id, client_secret = _env("STM_CLIENT_ID"), _env("STM_CLIENT_SECRET")
    if client_id and client_secret:
        creds.append(StmCredential(client_id, client_secret))

    # Numbered pairs: STM_CLIENT_ID_1 / STM_CLIENT_SECRET_1, _2, ...
    i = 1
    while True:
        client_id, client_secret = _env(f"STM_CLIENT_ID_{i}"), _env(f"STM_CLIENT_SECRET_{i}")
        if not client_id or not client_secret:
            break
        creds.append(StmCredential(client_id, client_secret))
        i += 1

    return tuple(creds)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


def load_settings() -> Settings:
    credentials = _load_credentials()
    if not credentials:
        logger.error(
            "No STM API credentials found. Set STM_CLIENT_ID/STM_CLIENT_SECRET "
            "(or STM_CLIENT_ID_1/STM_CLIENT_SECRET_1, ...) in backend/.env"
        )

    maps_key = _env("GOOGLE_MAPS_API_KEY") or _env("NEXT_PUBLIC_GOOGLE_MAPS_API_KEY")
    if not maps_key:
        logger.warning("GOOGLE_MAPS_API_KEY is missing, directions and ETA calls will fail soft")

    interval = _float_env("LIVE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)
    interval = min(MAX_POLL_INTERVAL, max(MIN_POLL_INTERVAL, interval))

    origins = os.getenv("CORS_ORIGINS")
    cors = tuple(o.strip() for o in origins.split(",") if o.strip()) if origins else Settings.cors_origins

    return Settings(
        stm_credentials=credentials,
        google_maps_api_key=maps_key,
        stm_token_url=os.getenv("STM_TOKEN_URL", STM_TOKEN_URL),
        stm_api_base_url=os.getenv("STM_API_BASE_URL", STM_API_BASE_URL).rstrip("/"),
        poll_interval=interval,
        http_timeout=_float_env("HTTP_TIMEOUT", 10.0),
        cors_origins=cors,
    )
