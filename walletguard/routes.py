from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from typing import Any, Dict, List
import structlog

from .config import settings
from .error_handling import InvalidInputError
from .models import (
    ActiveAlertsResponse, AlertsResponse, CacheStats, Notification, RiskAssessment, TokenHoldingsResponse,
    TransactionHistoryResponse, TransactionRiskAssessment, WalletOverview, WalletRiskResponse,
    WALLET_ADDRESS_PATTERN
)
from .services import Services

logger = structlog.get_logger()

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def validate_wallet_address(address: str) -> str:
    """Validate wallet address path parameter"""
    if not WALLET_ADDRESS_PATTERN.match(address):
        raise HTTPException(status_code=400, detail="Invalid wallet address format")
    return address


# ==================== WALLET ====================

@router.get("/api/wallet/{address}", response_model=WalletOverview)
async def get_wallet_overview(address: str = Depends(validate_wallet_address), services: Services = Depends(get_services)):
    """Total value, token count and largest holdings"""
    return await services.wallet_service.get_wallet_overview(address)


@router.get("/api/wallet/{address}/tokens", response_model=TokenHoldingsResponse)
async def get_token_holdings(address: str = Depends(validate_wallet_address), services: Services = Depends(get_services)):
    """Token holdings with current prices"""
    return await services.wallet_service.get_token_holdings(address)


@router.get("/api/wallet/{address}/transactions", response_model=TransactionHistoryResponse)
async def get_transaction_history(
    address: str = Depends(validate_wallet_address),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """Transaction history with a risk assessment per transaction"""
    return await services.wallet_service.get_transaction_history(address, limit=limit, offset=offset)


# ==================== ALERTS ====================

@router.post("/api/alerts", status_code=201)
async def create_alert(payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    """Create a new price, risk, balance or transaction alert"""
    alert = services.alert_service.create_alert(payload)
    return {"message": "Alert created successfully", "alert": alert}


@router.get("/api/alerts/{address}", response_model=AlertsResponse)
async def get_alerts(address: str = Depends(validate_wallet_address), services: Services = Depends(get_services)):
    alerts = services.alert_service.get_alerts_by_address(address)
    return AlertsResponse(address=address, alerts=alerts, total=len(alerts))


@router.get("/api/alerts/{address}/active", response_model=ActiveAlertsResponse)
async def get_active_alerts(address: str = Depends(validate_wallet_address), services: Services = Depends(get_services)):
    """Get triggered alerts for a wallet"""
    active_alerts = services.alert_service.get_active_alerts(address)
    return ActiveAlertsResponse(address=address, active_alerts=active_alerts, count=len(active_alerts))


@router.get("/api/alerts/{address}/notifications", response_model=List[Notification])
async def get_notifications(address: str = Depends(validate_wallet_address), services: Services = Depends(get_services)):
    return services.alert_service.get_notifications(address)


@router.delete("/api/alerts/{alert_id}")
async def delete_alert(alert_id: str, services: Services = Depends(get_services)):
    if not services.alert_service.delete_alert(alert_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"message": "Alert deleted successfully", "alertId": alert_id}


# ==================== RISK ====================

@router.post("/api/risk/portfolio", response_model=RiskAssessment)
async def score_portfolio(payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    """Score an arbitrary set of token holdings"""
    tokens = payload.get("tokens")
    if not isinstance(tokens, list):
        raise InvalidInputError("Request body must contain a 'tokens' list")
    return services.risk_calculator.calculate_portfolio_risk(tokens)


@router.post("/api/risk/transaction", response_model=TransactionRiskAssessment)
async def score_transaction(payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    """Score a single (possibly pending) transaction"""
    if not payload.get("to") or payload.get("value") is None:
        raise InvalidInputError("Invalid transaction: missing required fields (to, value)")
    return services.risk_calculator.assess_transaction_risk(payload)


@router.get("/api/risk/{address}", response_model=WalletRiskResponse)
async def get_wallet_risk(address: str = Depends(validate_wallet_address), services: Services = Depends(get_services)):
    """Current risk assessment for a wallet, memoized in the shared cache"""
    cache_key = f"risk:{address.lower()}"
    cached = services.cache.get(cache_key)
    if cached is not None:
        return cached.model_copy(update={"cached": True})

    tokens = await services.data_provider.get_token_balances(address)
    response = WalletRiskResponse(
        address=address,
        total_value_usd=sum(token.value_usd for token in tokens),
        token_count=len(tokens),
        risk=services.risk_calculator.calculate_portfolio_risk(tokens),
    )
    services.cache.set(cache_key, response, settings.RISK_CACHE_TTL)

    logger.info("wallet_risk_scored", address=address, score=response.risk.score,
                level=response.risk.level.value)
    return response


# ==================== CACHE ====================

@router.get("/api/cache/stats", response_model=CacheStats)
async def get_cache_stats(services: Services = Depends(get_services)):
    return services.cache.stats()


@router.delete("/api/cache")
async def clear_cache(services: Services = Depends(get_services)):
    services.cache.clear()
    return {"message": "Cache cleared"}
