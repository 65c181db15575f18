from dataclasses import dataclass
from typing import Optional

import httpx

from .alerts import AlertService, AlertStore
from .background_tasks import BackgroundTaskManager
from .cache import CacheService
from .error_handling import ErrorCollector
from .external_apis import DataProvider
from .risk_engine import RiskCalculator
from .wallet import WalletService


@dataclass
class Services:
    """One instance of every stateful collaborator, shared by reference"""
    cache: CacheService
    data_provider: DataProvider
    risk_calculator: RiskCalculator
    alert_store: AlertStore
    alert_service: AlertService
    error_collector: ErrorCollector
    task_manager: BackgroundTaskManager
    wallet_service: WalletService


def build_services(
    data_provider_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    trigger_policy: Optional[str] = None,
) -> Services:
    cache = CacheService()
    error_collector = ErrorCollector()
    data_provider = DataProvider(cache, base_url=data_provider_url, transport=transport)
    risk_calculator = RiskCalculator()
    alert_store = AlertStore()
    alert_service = AlertService(
        alert_store,
        data_provider,
        risk_calculator,
        error_collector=error_collector,
        trigger_policy=trigger_policy,
    )
    task_manager = BackgroundTaskManager(cache, alert_service)
    wallet_service = WalletService(data_provider, cache, risk_calculator)

    return Services(
        cache=cache,
        data_provider=data_provider,
        risk_calculator=risk_calculator,
        alert_store=alert_store,
        alert_service=alert_service,
        error_collector=error_collector,
        task_manager=task_manager,
        wallet_service=wallet_service,
    )
