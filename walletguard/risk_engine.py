import math
from collections.abc import Mapping
from typing import Dict, Iterable, List, Optional, Union

import structlog
from pydantic import ValidationError

from .config import settings, RiskThresholds, TokenClassification
from .error_handling import InvalidInputError, RiskCalculationError
from .models import (
    RiskAssessment, RiskFactor, RiskLevel, Recommendation, TokenHolding,
    Transaction, TransactionRiskAssessment
)

logger = structlog.get_logger()

HoldingInput = Union[TokenHolding, Mapping]
TransactionInput = Union[Transaction, Mapping]


def get_risk_level(score: float) -> RiskLevel:
    """Map a numeric score onto the shared LOW/MEDIUM/HIGH/CRITICAL bands"""
    if score >= RiskThresholds.CRITICAL:
        return RiskLevel.CRITICAL
    if score >= RiskThresholds.HIGH:
        return RiskLevel.HIGH
    if score >= RiskThresholds.MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RiskCalculator:
    """Core risk scoring engine for wallet holdings and single transactions.

    Both entry points are pure: they read only their arguments and the
    classification tables handed to the constructor.
    """

    def __init__(
        self,
        classification=TokenClassification,
        illiquid_floor_usd: Optional[float] = None,
        known_safe_contracts: Optional[Iterable[str]] = None,
        clamp_transaction_score: Optional[bool] = None,
    ):
        self.classification = classification
        self.illiquid_floor_usd = (
            settings.ILLIQUID_VALUE_FLOOR_USD if illiquid_floor_usd is None else illiquid_floor_usd
        )
        self.known_safe_contracts = frozenset(
            address.lower()
            for address in (settings.KNOWN_SAFE_CONTRACTS if known_safe_contracts is None else known_safe_contracts)
        )
        self.clamp_transaction_score = (
            settings.CLAMP_TRANSACTION_SCORE if clamp_transaction_score is None else clamp_transaction_score
        )
        self.high_value_usd = settings.HIGH_VALUE_TRANSACTION_USD
        self.high_gas_used = settings.HIGH_GAS_USED
        self.max_token_transfers = settings.MAX_TOKEN_TRANSFERS

    # ==================== PORTFOLIO RISK ====================

    def calculate_portfolio_risk(self, tokens: Iterable[HoldingInput]) -> RiskAssessment:
        """Score a set of holdings from 0 (safe) to 100 (critical)"""
        holdings = self._coerce_holdings(tokens)

        try:
            factors = {
                "diversification": self.calculate_diversification_risk(holdings),
                "volatility": self.calculate_volatility_risk(holdings),
                "concentration": self.calculate_concentration_risk(holdings),
                "liquidity": self.calculate_liquidity_risk(holdings),
            }
        except Exception as e:
            logger.error("Error calculating portfolio risk", token_count=len(holdings), error=str(e))
            raise RiskCalculationError(f"Portfolio risk calculation failed: {e}") from e

        total = sum(factor.score for factor in factors.values())
        score = max(0, min(100, _round_half_up(total)))
        level = get_risk_level(score)

        logger.debug("portfolio_risk_calculated",
                     token_count=len(holdings), score=score, level=level.value)

        return RiskAssessment(
            score=score,
            level=level,
            factors=factors,
            recommendations=self.get_risk_recommendations(level, factors),
            classification_version=self.classification.VERSION,
        )

    def calculate_diversification_risk(self, holdings: List[TokenHolding]) -> RiskFactor:
        """0-25 points, a step function of how many tokens are held"""
        token_count = len(holdings)

        if token_count == 0:
            score, status = 0, "No holdings"
        elif token_count == 1:
            score, status = 25, "No diversification - all eggs in one basket"
        elif token_count == 2:
            score, status = 20, "Very limited diversification"
        elif token_count <= 5:
            score, status = 12, "Moderate diversification"
        elif token_count <= 10:
            score, status = 5, "Good diversification"
        else:
            score, status = 2, "Excellent diversification"

        return RiskFactor(score=score, status=status, detail={"token_count": token_count})

    def calculate_volatility_risk(self, holdings: List[TokenHolding]) -> RiskFactor:
        """0-30 points from the value-weighted volatility class of each token"""
        breakdown = {"stablecoins": 0.0, "bluechip": 0.0, "altcoins": 0.0, "memecoins": 0.0}
        total_value = sum(token.value_usd for token in holdings)

        if total_value <= 0:
            return RiskFactor(score=0.0, status="No value to assess", detail={"breakdown": breakdown})

        weighted = 0.0
        for token in holdings:
            percentage = token.value_usd / total_value * 100
            token_class = self.classify_token(token.symbol)
            breakdown[token_class] += percentage
            weighted += percentage * self.classification.VOLATILITY_WEIGHTS[token_class]

        # Rescale the 0-100 weighted sum into the 0-30 band
        score = weighted / 100 * 30

        if score < 8:
            status = "Low volatility portfolio"
        elif score < 15:
            status = "Moderate volatility"
        elif score < 22:
            status = "High volatility"
        else:
            status = "Extreme volatility"

        return RiskFactor(score=score, status=status, detail={"breakdown": breakdown})

    def calculate_concentration_risk(self, holdings: List[TokenHolding]) -> RiskFactor:
        """0-25 points from the value share of the top one and top three holdings"""
        total_value = sum(token.value_usd for token in holdings)

        if total_value <= 0:
            return RiskFactor(
                score=0.0,
                status="No value to assess",
                detail={"top1_percent": 0.0, "top3_percent": 0.0, "top_holding": None},
            )

        ranked = sorted(holdings, key=lambda token: token.value_usd, reverse=True)
        top1_percent = ranked[0].value_usd / total_value * 100
        top3_percent = sum(token.value_usd for token in ranked[:3]) / total_value * 100

        if top1_percent > 70:
            score, status = 25, "Extreme concentration in single asset"
        elif top1_percent > 50:
            score, status = 20, "Very high concentration"
        elif top1_percent > 30:
            score, status = 15, "High concentration"
        elif top3_percent > 80:
            score, status = 10, "Moderate concentration in top 3"
        else:
            score, status = 3, "Well-balanced distribution"

        return RiskFactor(
            score=score,
            status=status,
            detail={
                "top1_percent": round(top1_percent, 1),
                "top3_percent": round(top3_percent, 1),
                "top_holding": ranked[0].symbol,
            },
        )

    def calculate_liquidity_risk(self, holdings: List[TokenHolding]) -> RiskFactor:
        """0-20 points from the value share held in illiquid tokens"""
        total_value = sum(token.value_usd for token in holdings)

        if total_value <= 0:
            return RiskFactor(
                score=0.0,
                status="No value to assess",
                detail={"illiquid_tokens": 0, "illiquid_percent": 0.0},
            )

        illiquid = [token for token in holdings if self.is_illiquid(token)]
        illiquid_percent = sum(token.value_usd for token in illiquid) / total_value * 100

        if illiquid_percent > 50:
            score, status = 20, "High illiquidity risk"
        elif illiquid_percent > 25:
            score, status = 15, "Moderate illiquidity"
        elif illiquid_percent > 10:
            score, status = 8, "Some illiquid positions"
        else:
            score, status = 2, "Good liquidity"

        return RiskFactor(
            score=score,
            status=status,
            detail={"illiquid_tokens": len(illiquid), "illiquid_percent": round(illiquid_percent, 1)},
        )

    def get_risk_recommendations(self, level: RiskLevel, factors: Dict[str, RiskFactor]) -> List[Recommendation]:
        """Generate recommendations based on which factors crossed their thresholds"""
        recommendations = []
        token_count = factors["diversification"].detail["token_count"]
        breakdown = factors["volatility"].detail["breakdown"]
        top1_percent = factors["concentration"].detail["top1_percent"]

        if level in (RiskLevel.CRITICAL, RiskLevel.HIGH):
            recommendations.append(Recommendation(
                priority="urgent",
                message="Consider immediate portfolio rebalancing",
                action="Reduce exposure to high-risk assets",
            ))

        if 0 < token_count < 3:
            recommendations.append(Recommendation(
                priority="high",
                message="Increase diversification",
                action="Add 2-3 more quality tokens to spread risk",
            ))

        if breakdown["memecoins"] > 30:
            recommendations.append(Recommendation(
                priority="high",
                message="High exposure to memecoins detected",
                action="Consider taking profits and rotating into bluechips",
            ))

        if top1_percent > 50:
            recommendations.append(Recommendation(
                priority="medium",
                message="Portfolio heavily concentrated in one asset",
                action="Rebalance to reduce single-asset dependency",
            ))

        if breakdown["stablecoins"] < 10 and level != RiskLevel.LOW:
            recommendations.append(Recommendation(
                priority="medium",
                message="No stable asset buffer",
                action="Consider allocating 10-20% to stablecoins",
            ))

        return recommendations

    # ==================== TRANSACTION RISK ====================

    def assess_transaction_risk(self, transaction: TransactionInput) -> TransactionRiskAssessment:
        """Additive point score for a single transaction"""
        tx = self._coerce_transaction(transaction)
        score = 0
        warnings = []

        if tx.value > self.high_value_usd:
            score += 15
            warnings.append("High transaction value")

        # Honeypot contracts tend to burn a lot of gas
        if tx.gas_used > self.high_gas_used:
            score += 20
            warnings.append("Unusually high gas usage")

        if len(tx.token_transfers) > self.max_token_transfers:
            score += 10
            warnings.append("Multiple token transfers in single transaction")

        if tx.to_address and not self.is_known_contract(tx.to_address):
            score += 25
            warnings.append("Interaction with unknown contract")

        if self.clamp_transaction_score:
            score = min(score, 100)

        level = get_risk_level(score)

        return TransactionRiskAssessment(
            score=score,
            level=level,
            warnings=warnings,
            should_alert=level in (RiskLevel.HIGH, RiskLevel.CRITICAL),
        )

    # ==================== TOKEN CLASSIFICATION ====================

    def classify_token(self, symbol: str) -> str:
        symbol = symbol.upper()
        if symbol in self.classification.STABLECOINS:
            return "stablecoins"
        if symbol in self.classification.BLUECHIPS:
            return "bluechip"
        if symbol in self.classification.MEMECOINS:
            return "memecoins"
        return "altcoins"

    def is_illiquid(self, token: TokenHolding) -> bool:
        return (
            token.value_usd < self.illiquid_floor_usd
            or token.symbol.upper() not in self.classification.KNOWN_LIQUID
        )

    def is_known_contract(self, address: str) -> bool:
        return address.lower() in self.known_safe_contracts

    # ==================== INPUT VALIDATION ====================

    def _coerce_holdings(self, tokens: Iterable[HoldingInput]) -> List[TokenHolding]:
        if tokens is None or isinstance(tokens, (str, bytes, Mapping)):
            raise InvalidInputError("tokens must be a list of token holdings")

        holdings = []
        for index, token in enumerate(tokens):
            if isinstance(token, TokenHolding):
                holdings.append(token)
            elif isinstance(token, Mapping):
                try:
                    holdings.append(TokenHolding.model_validate(token))
                except ValidationError as e:
                    raise InvalidInputError(f"Invalid token holding at index {index}: {e}") from e
            else:
                raise InvalidInputError(f"Invalid token holding at index {index}: {token!r}")
        return holdings

    def _coerce_transaction(self, transaction: TransactionInput) -> Transaction:
        if isinstance(transaction, Transaction):
            return transaction
        if isinstance(transaction, Mapping):
            try:
                return Transaction.model_validate(transaction)
            except ValidationError as e:
                raise InvalidInputError(f"Invalid transaction: {e}") from e
        raise InvalidInputError(f"Invalid transaction: {transaction!r}")
