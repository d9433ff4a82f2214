# app/core/config.py
from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "X402 Payment Gate"
    API_V1_STR: str = "/api/v1"

    # Grant storage
    DATABASE_URL: str = "sqlite:///./payments.db"

    # Ledger (Base Sepolia by default)
    LEDGER_RPC_URL: str = "https://sepolia.base.org"
    LEDGER_NETWORK: str = "Base Sepolia"
    LEDGER_CHAIN_ID: int = 84532
    LEDGER_REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Payment terms
    PAYMENT_WALLET_ADDRESS: Optional[str] = None
    PAYMENT_CURRENCY: str = "ETH"
    VIEW_DETAILS_FEE: str = "0.0001"
    DEPOSIT_FEE: str = "0.0002"
    COMPETITION_ENTRY_FEE: str = "0.0005"
    DEFAULT_FEE: str = "0.0001"  # Applied to unrecognized resource types

    # Verification
    GRANT_VALIDITY_DAYS: int = 30
    CONFIRMATION_TIMEOUT_SECONDS: float = 120.0
    CONFIRMATION_POLL_INTERVAL_SECONDS: float = 2.0

    # Session cache (best-effort, never authoritative)
    SESSION_CACHE_TTL_SECONDS: int = 24 * 60 * 60
    SESSION_CACHE_MAX_ENTRIES: int = 10_000

    PAYMENT_HISTORY_LIMIT: int = 50

    # Verification attempt log
    PAYMENT_AUDIT_ENABLED: bool = True
    PAYMENT_AUDIT_LOG_PATH: str = "logs/payment_audit.jsonl"

    # Comma-separated dashboard origins
    CORS_ORIGINS: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
