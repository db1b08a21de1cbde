"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tradebot.db"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]  # Vite dev server

    # Control API bearer token; empty disables auth (local use only)
    api_token: str = ""

    # Engine
    chains: list[str] = ["ethereum", "polygon", "bsc", "arbitrum", "optimism", "solana"]
    provider_mode: str = "fake"  # "fake" or "live"
    dry_run: bool = True  # paper execution even when quotes are live
    autostart: bool = False
    history_limit: int = 500
    engine_config_url: str = ""  # remote engine config; defaults are used when unset

    # Providers
    http_timeout_sec: float = 10.0
    discovery_url: str = ""
    zerox_api_url: str = "https://api.0x.org"
    zerox_api_key: str = ""
    jupiter_api_url: str = "https://quote-api.jup.ag/v6"
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    rpc_urls: dict[str, str] = {}
    taker_address: str = ""

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    model_config = {"env_prefix": "TB_", "env_file": ".env"}


settings = Settings()
