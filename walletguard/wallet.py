import asyncio
from typing import List

import structlog

from .cache import CacheService
from .config import settings
from .error_handling import ExternalAPIError
from .external_apis import DataProvider
from .models import (
    AnalyzedTransaction, PricedTokenHolding, TokenHolding, TokenHoldingsResponse,
    TransactionHistoryResponse, WalletOverview
)
from .risk_engine import RiskCalculator

logger = structlog.get_logger()

OVERVIEW_TOP_TOKENS = 10


class WalletService:
    """Read-only wallet views built on the data provider and the risk engine"""

    def __init__(self, data_provider: DataProvider, cache: CacheService, risk_calculator: RiskCalculator):
        self.data_provider = data_provider
        self.cache = cache
        self.risk_calculator = risk_calculator

    async def get_wallet_overview(self, address: str) -> WalletOverview:
        """Total value, token count and the largest holdings, cached per wallet"""
        cache_key = f"wallet:{address.lower()}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached.model_copy(update={"cached": True})

        tokens = await self.data_provider.get_token_balances(address)
        ranked = sorted(tokens, key=lambda token: token.value_usd, reverse=True)

        overview = WalletOverview(
            address=address,
            total_value_usd=sum(token.value_usd for token in tokens),
            token_count=len(tokens),
            tokens=ranked[:OVERVIEW_TOP_TOKENS],
        )
        self.cache.set(cache_key, overview, settings.WALLET_CACHE_TTL)
        return overview

    async def get_token_holdings(self, address: str) -> TokenHoldingsResponse:
        """Every holding enriched with its current market price"""
        tokens = await self.data_provider.get_token_balances(address)
        priced = await asyncio.gather(*(self._with_price(token) for token in tokens))

        return TokenHoldingsResponse(address=address, tokens=list(priced), total_tokens=len(priced))

    async def get_transaction_history(self, address: str, limit: int = 20, offset: int = 0) -> TransactionHistoryResponse:
        transactions = await self.data_provider.get_transactions(address, limit=limit, offset=offset)
        analyzed: List[AnalyzedTransaction] = [
            AnalyzedTransaction(**tx.model_dump(), risk=self.risk_calculator.assess_transaction_risk(tx))
            for tx in transactions
        ]

        return TransactionHistoryResponse(
            address=address,
            transactions=analyzed,
            total=len(analyzed),
            limit=limit,
            offset=offset,
        )

    async def _with_price(self, token: TokenHolding) -> PricedTokenHolding:
        # An unpriced token keeps its balance; price fields stay empty
        try:
            price = await self.data_provider.get_token_price(token.symbol)
        except ExternalAPIError as e:
            logger.warning("token_price_unavailable", symbol=token.symbol, error=str(e))
            return PricedTokenHolding(**token.model_dump())

        return PricedTokenHolding(
            **token.model_dump(),
            price=price.current,
            change_24h=price.change_24h,
            market_cap=price.market_cap,
        )
