import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "5"))

    # Loan rules
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    fine_per_day: float = float(os.getenv("FINE_PER_DAY", "1500"))

    # Logging
    log_file: str = os.getenv("LOG_FILE", "app.log")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Loan Desk")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")

    # Role used by the CLI when --role is not given
    default_role: Optional[str] = os.getenv("LIB_CLI_ROLE")


settings = Settings()


def configure_logging(cfg: Optional[Settings] = None) -> None:
    """Send log records to the configured log file and to stderr."""
    cfg = cfg or settings
    handlers = [logging.StreamHandler()]
    if cfg.log_file:
        handlers.append(logging.FileHandler(cfg.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=handlers,
    )
