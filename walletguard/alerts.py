import secrets
import time
from collections import deque
from collections.abc import Mapping
from datetime import datetime
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from .config import settings, TriggerPolicy
from .error_handling import ErrorCollector, InvalidInputError
from .external_apis import DataProvider
from .models import (
    Alert, AlertCondition, AlertCreate, AlertStatus, AlertType, EvaluationReport,
    Notification, RiskLevel, Severity, utcnow
)
from .risk_engine import RiskCalculator

logger = structlog.get_logger()


class AlertStore:
    """In-memory alert state shared by the API layer and the evaluator"""

    def __init__(self, notification_history: Optional[int] = None):
        self.alerts: Dict[str, Alert] = {}
        self.triggered: Dict[str, Alert] = {}
        self.notifications: Deque[Notification] = deque(
            maxlen=notification_history or settings.NOTIFICATION_HISTORY_SIZE
        )

    def add(self, alert: Alert):
        self.alerts[alert.id] = alert

    def remove(self, alert_id: str) -> bool:
        self.triggered.pop(alert_id, None)
        return self.alerts.pop(alert_id, None) is not None

    def mark_triggered(self, alert: Alert):
        self.triggered[alert.id] = alert

    def unmark_triggered(self, alert: Alert):
        self.triggered.pop(alert.id, None)

    def by_address(self, address: str) -> List[Alert]:
        address = address.lower()
        return [alert for alert in self.alerts.values() if alert.address.lower() == address]

    def triggered_by_address(self, address: str) -> List[Alert]:
        address = address.lower()
        return [alert for alert in self.triggered.values() if alert.address.lower() == address]


class AlertService:
    """Alert CRUD plus the periodic evaluator that triggers alerts"""

    def __init__(
        self,
        store: AlertStore,
        data_provider: DataProvider,
        risk_calculator: RiskCalculator,
        error_collector: Optional[ErrorCollector] = None,
        trigger_policy: Optional[str] = None,
    ):
        self.store = store
        self.data_provider = data_provider
        self.risk_calculator = risk_calculator
        self.error_collector = error_collector or ErrorCollector()
        self.trigger_policy = trigger_policy or settings.ALERT_TRIGGER_POLICY

        if self.trigger_policy not in (TriggerPolicy.LATCH, TriggerPolicy.REARM):
            raise InvalidInputError(f"Unknown alert trigger policy: {self.trigger_policy}")

        self._evaluators: Dict[AlertType, Callable[[Alert], Awaitable[bool]]] = {
            AlertType.PRICE: self.evaluate_price_alert,
            AlertType.RISK: self.evaluate_risk_alert,
            AlertType.BALANCE: self.evaluate_balance_alert,
            AlertType.TRANSACTION: self.evaluate_transaction_alert,
        }

    # ==================== CRUD ====================

    def create_alert(self, request: Union[AlertCreate, Mapping]) -> Alert:
        """Validate and store a new alert"""
        if not isinstance(request, AlertCreate):
            if not isinstance(request, Mapping):
                raise InvalidInputError("Alert request must be an object")
            try:
                request = AlertCreate.model_validate(request)
            except ValidationError as e:
                raise InvalidInputError(f"Invalid alert: {e}") from e

        alert = Alert(
            id=self.generate_alert_id(),
            address=request.address,
            type=request.type,
            condition=request.condition,
            value=request.value,
            token=request.token,
            status=AlertStatus.ACTIVE,
            triggered=False,
            created_at=utcnow(),
        )
        self.store.add(alert)

        logger.info("alert_created", alert_id=alert.id, address=alert.address,
                    alert_type=alert.type.value, condition=alert.condition.value)
        return alert

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self.store.alerts.get(alert_id)

    def get_alerts_by_address(self, address: str) -> List[Alert]:
        return self.store.by_address(address)

    def get_active_alerts(self, address: str) -> List[Alert]:
        """Alerts the user should see now, i.e. the triggered ones"""
        return self.store.triggered_by_address(address)

    def delete_alert(self, alert_id: str) -> bool:
        deleted = self.store.remove(alert_id)
        if deleted:
            logger.info("alert_deleted", alert_id=alert_id)
        return deleted

    def get_notifications(self, address: Optional[str] = None) -> List[Notification]:
        if address is None:
            return list(self.store.notifications)
        address = address.lower()
        return [n for n in self.store.notifications if n.address.lower() == address]

    # ==================== EVALUATOR ====================

    async def check_alerts(self) -> EvaluationReport:
        """Run one evaluation pass over every pending alert.

        A failing alert is logged and skipped; it never stops the pass.
        """
        start_time = time.monotonic()
        report = EvaluationReport()

        # Snapshot, alerts may be deleted while a lookup is in flight
        for alert in list(self.store.alerts.values()):
            if not self._is_candidate(alert):
                continue

            report.checked += 1
            try:
                condition_met = await self.evaluate_alert(alert)
            except Exception as e:
                report.failed += 1
                logger.error("alert_check_failed", alert_id=alert.id,
                             alert_type=alert.type.value, error=str(e))
                self.error_collector.record_error(e, {"alert_id": alert.id, "alert_type": alert.type.value})
                continue

            alert.last_checked = utcnow()

            if alert.id not in self.store.alerts:
                continue

            if condition_met and not alert.triggered:
                self.trigger_alert(alert)
                report.triggered += 1
            elif not condition_met and alert.triggered:
                self.rearm_alert(alert)
                report.rearmed += 1

        report.duration_seconds = round(time.monotonic() - start_time, 3)
        logger.info("alert_pass_completed", **report.model_dump())
        return report

    def _is_candidate(self, alert: Alert) -> bool:
        if alert.status != AlertStatus.ACTIVE:
            return False
        if alert.triggered:
            return self.trigger_policy == TriggerPolicy.REARM
        return True

    async def evaluate_alert(self, alert: Alert) -> bool:
        evaluator = self._evaluators.get(alert.type)
        if evaluator is None:
            raise InvalidInputError(f"No evaluator for alert type {alert.type}")
        return await evaluator(alert)

    async def evaluate_price_alert(self, alert: Alert) -> bool:
        price = await self.data_provider.get_token_price(alert.token)
        threshold = float(alert.value)

        if alert.condition == AlertCondition.ABOVE:
            return price.current > threshold
        if alert.condition == AlertCondition.BELOW:
            return price.current < threshold
        if alert.condition == AlertCondition.CHANGE_UP:
            return price.change_24h > threshold
        if alert.condition == AlertCondition.CHANGE_DOWN:
            return price.change_24h < -threshold
        raise InvalidInputError(f"Unsupported PRICE condition {alert.condition}")

    async def evaluate_risk_alert(self, alert: Alert) -> bool:
        tokens = await self.data_provider.get_token_balances(alert.address)
        assessment = self.risk_calculator.calculate_portfolio_risk(tokens)

        if alert.condition == AlertCondition.EXCEEDS:
            return assessment.score > float(alert.value)
        if alert.condition == AlertCondition.BELOW:
            return assessment.score < float(alert.value)
        if alert.condition == AlertCondition.LEVEL:
            return assessment.level == RiskLevel(alert.value)
        raise InvalidInputError(f"Unsupported RISK condition {alert.condition}")

    async def evaluate_balance_alert(self, alert: Alert) -> bool:
        tokens = await self.data_provider.get_token_balances(alert.address)
        symbol = alert.token.upper()
        holding = next((t for t in tokens if t.symbol.upper() == symbol), None)

        # Not holding the token is a false condition, not an error
        if holding is None:
            return False

        if alert.condition == AlertCondition.ABOVE:
            return holding.balance > float(alert.value)
        if alert.condition == AlertCondition.BELOW:
            return holding.balance < float(alert.value)
        raise InvalidInputError(f"Unsupported BALANCE condition {alert.condition}")

    async def evaluate_transaction_alert(self, alert: Alert) -> bool:
        transactions = await self.data_provider.get_transactions(alert.address, limit=1)
        if not transactions:
            return False

        latest = transactions[0]
        # Compared against block timestamps only, never the wall clock
        since: datetime = alert.last_seen_transaction_at or alert.created_at
        if latest.timestamp is None or latest.timestamp <= since:
            return False

        risk = self.risk_calculator.assess_transaction_risk(latest)
        alert.last_seen_transaction_at = latest.timestamp
        return risk.should_alert

    # ==================== TRIGGERING ====================

    def trigger_alert(self, alert: Alert) -> Notification:
        alert.triggered = True
        alert.triggered_at = utcnow()
        self.store.mark_triggered(alert)

        logger.info("alert_triggered", alert_id=alert.id, alert_type=alert.type.value,
                    address=alert.address)
        return self.notify_user(alert)

    def rearm_alert(self, alert: Alert):
        alert.triggered = False
        alert.triggered_at = None
        self.store.unmark_triggered(alert)
        logger.info("alert_rearmed", alert_id=alert.id, alert_type=alert.type.value)

    def notify_user(self, alert: Alert) -> Notification:
        notification = Notification(
            alert_id=alert.id,
            address=alert.address,
            type=alert.type,
            message=self.get_alert_message(alert),
            severity=self.get_alert_severity(alert),
        )
        self.store.notifications.append(notification)

        logger.info("notification_created", alert_id=alert.id,
                    severity=notification.severity.value, message=notification.message)
        return notification

    @staticmethod
    def get_alert_message(alert: Alert) -> str:
        if alert.type == AlertType.PRICE:
            return f"{alert.token} price {alert.condition.value} {alert.value}"
        if alert.type == AlertType.RISK:
            return f"Portfolio risk {alert.condition.value} threshold"
        if alert.type == AlertType.BALANCE:
            return f"{alert.token} balance {alert.condition.value} {alert.value}"
        return "Risky transaction detected on your wallet"

    @staticmethod
    def get_alert_severity(alert: Alert) -> Severity:
        if alert.type in (AlertType.TRANSACTION, AlertType.RISK):
            return Severity.HIGH
        return Severity.MEDIUM

    @staticmethod
    def generate_alert_id() -> str:
        return f"alert_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
