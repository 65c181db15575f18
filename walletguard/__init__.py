"""
WalletGuard - Wallet Risk Scoring and Alert Monitoring Service

This package scores a crypto wallet's token holdings and transactions and
watches user-defined alert conditions in the background.

Key Features:
- Portfolio risk score (0-100) from diversification, volatility,
  concentration and liquidity sub-factors
- Additive transaction risk scoring with a known-contract allowlist
- PRICE, RISK, BALANCE and TRANSACTION alerts evaluated every 30 seconds
- Failure isolation: one broken alert never stops the evaluation pass
- Shared in-memory TTL cache with a periodic sweep
- Structured JSON logging with structlog

The ASGI application lives in ``walletguard.main:app``.
"""

__version__ = "1.0.0"

from .config import settings

__all__ = ["settings", "__version__"]
