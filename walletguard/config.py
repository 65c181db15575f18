from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Environment
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    PORT: int = 3001

    # Data provider (wallet / market API)
    DATA_PROVIDER_URL: str = "https://aura.adex.network/api"
    DATA_PROVIDER_TIMEOUT: float = 30.0
    DATA_PROVIDER_MAX_RETRIES: int = 3
    DATA_PROVIDER_RETRY_BACKOFF: float = 1.0

    # Cache
    CACHE_DEFAULT_TTL: int = 300
    CACHE_SWEEP_INTERVAL: int = 300
    PRICE_CACHE_TTL: int = 60
    BALANCE_CACHE_TTL: int = 60
    RISK_CACHE_TTL: int = 300
    WALLET_CACHE_TTL: int = 300

    # Alert monitoring
    ALERT_CHECK_INTERVAL: int = 30
    ALERT_TRIGGER_POLICY: str = "latch"  # latch | rearm
    NOTIFICATION_HISTORY_SIZE: int = 1000

    # Risk calculation parameters
    ILLIQUID_VALUE_FLOOR_USD: float = 100.0
    HIGH_VALUE_TRANSACTION_USD: float = 10000.0
    HIGH_GAS_USED: int = 500000
    MAX_TOKEN_TRANSFERS: int = 5
    CLAMP_TRANSACTION_SCORE: bool = True
    KNOWN_SAFE_CONTRACTS: List[str] = [
        "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",  # Uniswap V2 router
        "0xe592427a0aece92de3edee1f18e0157c05861564",  # Uniswap V3 router
        "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45",  # Uniswap V3 router 2
        "0x1111111254eeb25477b68fb85ed929f73a960582",  # 1inch v5
    ]


# Global settings instance
settings = Settings()


# Token classification tables. Scores are only comparable between runs that
# share the same VERSION, so bump it whenever a set or coefficient changes.
class TokenClassification:
    VERSION = "2024.1"

    STABLECOINS = frozenset({"USDC", "USDT", "DAI", "BUSD", "TUSD", "FRAX"})
    BLUECHIPS = frozenset({"BTC", "ETH", "BNB", "SOL", "MATIC", "AVAX", "LINK", "AURA"})
    MEMECOINS = frozenset({"DOGE", "SHIB", "PEPE", "FLOKI", "BONK"})
    KNOWN_LIQUID = STABLECOINS | BLUECHIPS

    VOLATILITY_WEIGHTS = {
        "stablecoins": 0.05,
        "bluechip": 0.15,
        "altcoins": 0.30,
        "memecoins": 0.50,
    }


# Risk level score thresholds (inclusive lower bounds)
class RiskThresholds:
    CRITICAL = 75
    HIGH = 50
    MEDIUM = 25


# Alert trigger policies
class TriggerPolicy:
    LATCH = "latch"
    REARM = "rearm"
