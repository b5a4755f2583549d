# academy/config.py
import os


class Settings:
    DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./academy.db")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # attempts for a fee ledger write that loses a concurrent update race
    LEDGER_RETRY_LIMIT = int(os.environ.get("LEDGER_RETRY_LIMIT", "3"))
    TOP_PERFORMERS = int(os.environ.get("TOP_PERFORMERS", "5"))


settings = Settings()
