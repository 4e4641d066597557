"""Application settings.

Values come from the process environment, optionally seeded from a .env
file in the working directory.

Usage:
    from core.config import get_settings

    settings = get_settings()
    print(settings.api_base_url)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    return int(value)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the NFSe pipeline."""
    # OAuth client (fallback when no credential has been stored)
    client_id: str = ""
    client_secret: str = ""

    # ERP endpoints
    api_base_url: str = "https://api.bling.com.br/Api/v3"
    authorization_url: str = "https://www.bling.com.br/Api/v3/oauth/authorize"
    token_url: str = "https://www.bling.com.br/Api/v3/oauth/token"

    # Persistence
    db_path: Path = Path("nfse_pipeline.db")
    user_id: str = "default"
    token_encryption_key: str = ""

    # Invoice defaults
    payment_method_id: int = 2222749
    service_code: str = "5.08"
    series: str = "1"
    default_city: str = "Betim"
    default_state: str = "MG"
    cancelled_situation: int = 2

    # Throttling between batch items (seconds)
    batch_item_delay: float = 1.0
    sync_item_delay: float = 2.0

    frontend_url: str = "http://localhost:5173"
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """Build settings from environment variables (after loading .env)."""
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        return cls(
            client_id=os.getenv("BLING_CLIENT_ID", ""),
            client_secret=os.getenv("BLING_CLIENT_SECRET", ""),
            api_base_url=os.getenv("BLING_API_BASE_URL", cls.api_base_url).rstrip("/"),
            authorization_url=os.getenv("BLING_AUTHORIZATION_URL", cls.authorization_url),
            token_url=os.getenv("BLING_TOKEN_URL", cls.token_url),
            db_path=Path(os.getenv("NFSE_DB_PATH", "nfse_pipeline.db")),
            user_id=os.getenv("NFSE_USER_ID", "default"),
            token_encryption_key=os.getenv("TOKEN_ENCRYPTION_KEY", ""),
            payment_method_id=_env_int("NFSE_PAYMENT_METHOD_ID", cls.payment_method_id),
            service_code=os.getenv("NFSE_SERVICE_CODE", cls.service_code),
            series=os.getenv("NFSE_SERIES", cls.series),
            default_city=os.getenv("NFSE_DEFAULT_CITY", cls.default_city),
            default_state=os.getenv("NFSE_DEFAULT_STATE", cls.default_state),
            cancelled_situation=_env_int("NFSE_CANCELLED_SITUATION", cls.cancelled_situation),
            batch_item_delay=_env_float("BATCH_ITEM_DELAY_SECONDS", cls.batch_item_delay),
            sync_item_delay=_env_float("SYNC_ITEM_DELAY_SECONDS", cls.sync_item_delay),
            frontend_url=os.getenv("FRONTEND_URL", cls.frontend_url),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            log_json=_env_bool("LOG_JSON", False),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings (loaded on first use)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
