from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    SOLANA_RPC_URL: str = "https://api.devnet.solana.com"
    LEDGER_COMMITMENT: str = "confirmed"
    LEDGER_RPC_TIMEOUT: float = 30

    CONTRACT_PUBKEY: str
    PRIVATE_KEY: str

    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = None
    INVENTORY_TABLE: str = "nft_data"
    RUNS_TABLE: str = "reward_runs"

    FRESHNESS_WINDOW_SECONDS: int = 3600
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
