import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[2]
APP_ROOT = Path(__file__).resolve().parent
load_dotenv(REPO_ROOT / ".env")


@dataclass(frozen=True)
class Settings:
    ai_provider: str
    ai_api_key: str
    ai_model: str
    ai_base_url: str
    ai_headers_json: str
    ai_temperature: float
    ai_max_tokens: int
    ai_timeout: int
    ai_locale: str
    categories_path: str
    github_token: str
    database_url: str
    cors_origins: str
    log_level: str


def get_settings() -> Settings:
    def pick(key: str, default: str) -> str:
        return os.getenv(key, default)

    def pick_nonempty(key: str, default: str) -> str:
        value = pick(key, default)
        return value if str(value).strip() else default

    def pick_int(key: str, default: int) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except (TypeError, ValueError):
            return default

    def pick_float(key: str, default: float) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except (TypeError, ValueError):
            return default

    locale = pick_nonempty("AI_LOCALE", "zh").strip().lower()

    return Settings(
        ai_provider=pick("AI_PROVIDER", "none"),
        ai_api_key=os.getenv("AI_API_KEY", ""),
        ai_model=pick("AI_MODEL", ""),
        ai_base_url=pick("AI_BASE_URL", ""),
        ai_headers_json=pick("AI_HEADERS_JSON", ""),
        ai_temperature=pick_float("AI_TEMPERATURE", 0.3),
        ai_max_tokens=pick_int("AI_MAX_TOKENS", 1000),
        ai_timeout=pick_int("AI_TIMEOUT", 60),
        ai_locale=locale,
        categories_path=pick_nonempty(
            "CATEGORIES_PATH", str(APP_ROOT / "data" / "categories.yaml")
        ),
        github_token=os.getenv("GITHUB_TOKEN", ""),
        database_url=os.getenv("DATABASE_URL", "sqlite:////data/app.db"),
        cors_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
