import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    backend: str = "memory"  # "memory" | "firebase"
    firebase_credentials: Optional[str] = None
    firebase_web_api_key: Optional[str] = None
    allowed_email_suffix: str = "@inst.edu"
    mutation_timeout: float = 10.0
    checkout_atomic: bool = False
    seed_path: str = "data/seed.json"
    log_level: str = "INFO"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Читает настройки из окружения (.env подхватывается через python-dotenv).
    env можно передать явно, тогда .env не читается.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    backend = env.get("STOREFRONT_BACKEND", "memory").strip().lower()
    if backend not in ("memory", "firebase"):
        raise ValueError(f"Unknown STOREFRONT_BACKEND: {backend!r}")

    return Settings(
        backend=backend,
        firebase_credentials=env.get("FIREBASE_CREDENTIALS") or None,
        firebase_web_api_key=(env.get("FIREBASE_WEB_API_KEY") or "").strip() or None,
        allowed_email_suffix=env.get("ALLOWED_EMAIL_SUFFIX", "@inst.edu").strip().lower(),
        mutation_timeout=float(env.get("MUTATION_TIMEOUT", "10")),
        checkout_atomic=_flag(env.get("CHECKOUT_ATOMIC")),
        seed_path=env.get("SEED_PATH", "data/seed.json"),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
