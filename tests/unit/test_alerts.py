import re
from datetime import timedelta

import pytest

from walletguard.alerts import AlertService
from walletguard.error_handling import ExternalAPIError, InvalidInputError
from walletguard.models import (
    AlertCondition, AlertCreate, AlertStatus, AlertType, RiskLevel, Severity, TokenPrice, Transaction
)


def price_alert(address, condition="ABOVE", value=1.5, token="AURA"):
    return {"address": address, "type": "PRICE", "condition": condition, "value": value, "token": token}


def risk_alert(address, condition="EXCEEDS", value=30):
    return {"address": address, "type": "RISK", "condition": condition, "value": value}


class TestAlertCreation:

    def test_create_price_alert(self, alert_service, sample_wallet_address):
        alert = alert_service.create_alert(price_alert(sample_wallet_address))

        assert re.match(r"^alert_\d+_[0-9a-f]{10}$", alert.id)
        assert alert.type == AlertType.PRICE
        assert alert.condition == AlertCondition.ABOVE
        assert alert.value == 1.5
        assert alert.token == "AURA"
        assert alert.status == AlertStatus.ACTIVE
        assert alert.triggered is False
        assert alert.triggered_at is None
        assert alert.last_checked is None
        assert alert_service.get_alert(alert.id) is alert

    def test_names_and_values_are_normalized(self, alert_service, sample_wallet_address):
        alert = alert_service.create_alert({
            "address": sample_wallet_address,
            "type": "balance",
            "condition": "below",
            "value": "250",
            "token": " eth ",
        })

        assert alert.type == AlertType.BALANCE
        assert alert.condition == AlertCondition.BELOW
        assert alert.value == 250.0
        assert alert.token == "ETH"

    def test_level_alert_value_is_risk_level(self, alert_service, sample_wallet_address):
        alert = alert_service.create_alert(risk_alert(sample_wallet_address, "LEVEL", "high"))

        assert alert.value == RiskLevel.HIGH.value

    def test_accepts_validated_model(self, alert_service, sample_wallet_address):
        spec = AlertCreate(address=sample_wallet_address, type="TRANSACTION", condition="RISKY", value=0)

        alert = alert_service.create_alert(spec)

        assert alert.type == AlertType.TRANSACTION

    def test_ids_are_unique(self, alert_service, sample_wallet_address):
        ids = {alert_service.create_alert(price_alert(sample_wallet_address)).id for _ in range(50)}

        assert len(ids) == 50

    @pytest.mark.parametrize("spec", [
        {"address": "0x123", "type": "PRICE", "condition": "ABOVE", "value": 1, "token": "AURA"},
        {"address": "not-an-address", "type": "RISK", "condition": "EXCEEDS", "value": 50},
        {"type": "RISK", "condition": "EXCEEDS", "value": 50},
        {"address": "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5", "type": "SOCIAL",
         "condition": "ABOVE", "value": 1},
        {"address": "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5", "type": "PRICE",
         "condition": "EXCEEDS", "value": 1, "token": "AURA"},
        {"address": "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5", "type": "RISK",
         "condition": "CHANGE_UP", "value": 1},
        {"address": "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5", "type": "PRICE",
         "condition": "ABOVE", "value": 1},
        {"address": "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5", "type": "BALANCE",
         "condition": "ABOVE", "value": 1},
        {"address": "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5", "type": "PRICE",
         "condition": "ABOVE", "value": "a lot", "token": "AURA"},
        {"address": "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5", "type": "RISK",
         "condition": "LEVEL", "value": "EXTREME"},
    ])
    def test_invalid_specs_are_rejected(self, alert_service, spec):
        with pytest.raises(InvalidInputError):
            alert_service.create_alert(spec)

        assert alert_service.store.alerts == {}

    def test_non_mapping_spec_is_rejected(self, alert_service):
        with pytest.raises(InvalidInputError):
            alert_service.create_alert(["PRICE"])

    def test_unknown_trigger_policy_is_rejected(self, alert_store, mock_data_provider, risk_calculator):
        with pytest.raises(InvalidInputError):
            AlertService(alert_store, mock_data_provider, risk_calculator, trigger_policy="sometimes")


class TestAlertLookup:

    def test_alerts_by_address_is_case_insensitive(self, alert_service, sample_wallet_address):
        other = "0x" + "1" * 40
        mine = alert_service.create_alert(price_alert(sample_wallet_address))
        alert_service.create_alert(price_alert(other))

        alerts = alert_service.get_alerts_by_address(sample_wallet_address.upper().replace("0X", "0x"))

        assert alerts == [mine]

    def test_unknown_address_has_no_alerts(self, alert_service):
        assert alert_service.get_alerts_by_address("0x" + "2" * 40) == []
        assert alert_service.get_active_alerts("0x" + "2" * 40) == []

    def test_delete_alert(self, alert_service, sample_wallet_address):
        alert = alert_service.create_alert(price_alert(sample_wallet_address))

        assert alert_service.delete_alert(alert.id) is True
        assert alert_service.get_alert(alert.id) is None
        assert alert_service.delete_alert(alert.id) is False

    @pytest.mark.asyncio
    async def test_delete_triggered_alert_removes_it_from_active(self, alert_service, mock_data_provider,
                                                                 sample_wallet_address):
        mock_data_provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=2.0)
        alert = alert_service.create_alert(price_alert(sample_wallet_address))
        await alert_service.check_alerts()
        assert alert_service.get_active_alerts(sample_wallet_address) == [alert]

        alert_service.delete_alert(alert.id)

        assert alert_service.get_active_alerts(sample_wallet_address) == []


class TestPriceAlerts:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("condition, threshold, current, change, expected", [
        ("ABOVE", 1.5, 1.6, 0.0, True),
        ("ABOVE", 1.5, 1.5, 0.0, False),
        ("BELOW", 1.5, 1.4, 0.0, True),
        ("BELOW", 1.5, 1.5, 0.0, False),
        ("CHANGE_UP", 5, 1.0, 6.0, True),
        ("CHANGE_UP", 5, 1.0, 5.0, False),
        ("CHANGE_DOWN", 10, 1.0, -12.0, True),
        ("CHANGE_DOWN", 10, 1.0, -8.0, False),
        ("CHANGE_DOWN", 10, 1.0, 12.0, False),
    ])
    async def test_conditions(self, alert_service, mock_data_provider, sample_wallet_address,
                              condition, threshold, current, change, expected):
        mock_data_provider.get_token_price.return_value = TokenPrice(
            symbol="AURA", current=current, change_24h=change
        )
        alert = alert_service.create_alert(price_alert(sample_wallet_address, condition, threshold))

        assert await alert_service.evaluate_alert(alert) is expected
        mock_data_provider.get_token_price.assert_awaited_with("AURA")

    @pytest.mark.asyncio
    async def test_price_alert_triggers_once(self, alert_service, mock_data_provider, sample_wallet_address):
        mock_data_provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=1.6)
        alert = alert_service.create_alert(price_alert(sample_wallet_address))

        report = await alert_service.check_alerts()

        assert report.checked == 1
        assert report.triggered == 1
        assert alert.triggered is True
        assert alert.triggered_at is not None
        assert alert_service.get_active_alerts(sample_wallet_address) == [alert]

        notifications = alert_service.get_notifications(sample_wallet_address)
        assert len(notifications) == 1
        assert notifications[0].alert_id == alert.id
        assert notifications[0].severity == Severity.MEDIUM
        assert notifications[0].message == "AURA price ABOVE 1.5"

    @pytest.mark.asyncio
    async def test_unmet_condition_stays_pending(self, alert_service, mock_data_provider, sample_wallet_address):
        mock_data_provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=1.0)
        alert = alert_service.create_alert(price_alert(sample_wallet_address))

        report = await alert_service.check_alerts()

        assert report.checked == 1
        assert report.triggered == 0
        assert alert.triggered is False
        assert alert_service.get_notifications() == []


class TestRiskAlerts:
    # sample_holdings scores 33, which is MEDIUM

    @pytest.mark.asyncio
    @pytest.mark.parametrize("condition, value, expected", [
        ("EXCEEDS", 30, True),
        ("EXCEEDS", 33, False),
        ("BELOW", 40, True),
        ("BELOW", 33, False),
        ("LEVEL", "MEDIUM", True),
        ("LEVEL", "critical", False),
    ])
    async def test_conditions(self, alert_service, mock_data_provider, sample_wallet_address,
                              sample_holdings, condition, value, expected):
        mock_data_provider.get_token_balances.return_value = sample_holdings
        alert = alert_service.create_alert(risk_alert(sample_wallet_address, condition, value))

        assert await alert_service.evaluate_alert(alert) is expected
        mock_data_provider.get_token_balances.assert_awaited_with(sample_wallet_address)

    @pytest.mark.asyncio
    async def test_risk_notification_is_high_severity(self, alert_service, mock_data_provider,
                                                      sample_wallet_address, sample_holdings):
        mock_data_provider.get_token_balances.return_value = sample_holdings
        alert_service.create_alert(risk_alert(sample_wallet_address, "EXCEEDS", 20))

        await alert_service.check_alerts()

        notification = alert_service.get_notifications(sample_wallet_address)[0]
        assert notification.severity == Severity.HIGH
        assert notification.type == AlertType.RISK


class TestBalanceAlerts:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("condition, value, expected", [
        ("ABOVE", 1000, True),
        ("ABOVE", 5000, False),
        ("BELOW", 6000, True),
        ("BELOW", 100, False),
    ])
    async def test_conditions(self, alert_service, mock_data_provider, sample_wallet_address,
                              sample_holdings, condition, value, expected):
        mock_data_provider.get_token_balances.return_value = sample_holdings
        alert = alert_service.create_alert({
            "address": sample_wallet_address, "type": "BALANCE",
            "condition": condition, "value": value, "token": "aura",
        })

        assert await alert_service.evaluate_alert(alert) is expected

    @pytest.mark.asyncio
    async def test_token_not_held_is_false(self, alert_service, mock_data_provider, sample_wallet_address,
                                           sample_holdings):
        mock_data_provider.get_token_balances.return_value = sample_holdings
        alert = alert_service.create_alert({
            "address": sample_wallet_address, "type": "BALANCE",
            "condition": "BELOW", "value": 10, "token": "BTC",
        })

        report = await alert_service.check_alerts()

        assert report.failed == 0
        assert report.triggered == 0
        assert alert.last_checked is not None


class TestTransactionAlerts:

    def transaction_alert(self, alert_service, address):
        return alert_service.create_alert({
            "address": address, "type": "TRANSACTION", "condition": "RISKY", "value": 0,
        })

    @pytest.mark.asyncio
    async def test_new_risky_transaction_triggers(self, alert_service, mock_data_provider,
                                                  sample_wallet_address, risky_transaction):
        mock_data_provider.get_transactions.return_value = [risky_transaction]
        alert = self.transaction_alert(alert_service, sample_wallet_address)

        report = await alert_service.check_alerts()

        assert report.triggered == 1
        assert alert.triggered is True
        mock_data_provider.get_transactions.assert_awaited_with(sample_wallet_address, limit=1)

        notification = alert_service.get_notifications(sample_wallet_address)[0]
        assert notification.severity == Severity.HIGH
        assert notification.message == "Risky transaction detected on your wallet"

    @pytest.mark.asyncio
    async def test_transaction_before_alert_creation_is_ignored(self, alert_service, mock_data_provider,
                                                                sample_wallet_address, risky_transaction):
        alert = self.transaction_alert(alert_service, sample_wallet_address)
        old = risky_transaction.model_copy(update={"timestamp": alert.created_at - timedelta(minutes=5)})
        mock_data_provider.get_transactions.return_value = [old]

        assert await alert_service.evaluate_alert(alert) is False

    @pytest.mark.asyncio
    async def test_already_scored_transaction_is_ignored(self, alert_service, mock_data_provider,
                                                         sample_wallet_address, risky_transaction):
        alert = self.transaction_alert(alert_service, sample_wallet_address)
        mock_data_provider.get_transactions.return_value = [risky_transaction]

        assert await alert_service.evaluate_alert(alert) is True
        assert alert.last_seen_transaction_at == risky_transaction.timestamp
        assert await alert_service.evaluate_alert(alert) is False

    @pytest.mark.asyncio
    async def test_late_indexed_transaction_still_triggers(self, alert_service, mock_data_provider,
                                                           sample_wallet_address, risky_transaction):
        alert = self.transaction_alert(alert_service, sample_wallet_address)
        alert.created_at = alert.created_at - timedelta(minutes=10)
        mined_at = alert.created_at + timedelta(minutes=1)

        # First pass: mined already, but the provider has not indexed it yet
        mock_data_provider.get_transactions.return_value = []
        first = await alert_service.check_alerts()
        assert first.triggered == 0
        assert alert.last_checked > mined_at

        mock_data_provider.get_transactions.return_value = [
            risky_transaction.model_copy(update={"timestamp": mined_at})
        ]
        second = await alert_service.check_alerts()

        assert second.triggered == 1
        assert alert.triggered is True

    @pytest.mark.asyncio
    async def test_safe_transaction_advances_watermark(self, alert_service, mock_data_provider,
                                                       sample_wallet_address, risky_transaction):
        alert = self.transaction_alert(alert_service, sample_wallet_address)
        safe = Transaction(
            to_address="0x7a250d5630b4cf539739df2c5dacb4c659f2488d",
            value=50,
            timestamp=risky_transaction.timestamp,
        )
        mock_data_provider.get_transactions.return_value = [safe]

        assert await alert_service.evaluate_alert(alert) is False
        assert alert.last_seen_transaction_at == safe.timestamp

        older_risky = risky_transaction.model_copy(
            update={"timestamp": risky_transaction.timestamp - timedelta(seconds=30)}
        )
        mock_data_provider.get_transactions.return_value = [older_risky]
        assert await alert_service.evaluate_alert(alert) is False

    @pytest.mark.asyncio
    async def test_safe_new_transaction_does_not_trigger(self, alert_service, mock_data_provider,
                                                         sample_wallet_address, risky_transaction):
        safe = Transaction(
            to_address="0x7a250d5630b4cf539739df2c5dacb4c659f2488d",
            value=50,
            gas_used=21000,
            timestamp=risky_transaction.timestamp,
        )
        mock_data_provider.get_transactions.return_value = [safe]
        alert = self.transaction_alert(alert_service, sample_wallet_address)

        assert await alert_service.evaluate_alert(alert) is False

    @pytest.mark.asyncio
    async def test_no_transactions(self, alert_service, mock_data_provider, sample_wallet_address):
        alert = self.transaction_alert(alert_service, sample_wallet_address)

        assert await alert_service.evaluate_alert(alert) is False


class TestEvaluationPass:

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, alert_service, mock_data_provider, error_collector,
                                       sample_wallet_address, sample_holdings):
        mock_data_provider.get_token_price.side_effect = ExternalAPIError("price feed down")
        mock_data_provider.get_token_balances.return_value = sample_holdings
        broken = alert_service.create_alert(price_alert(sample_wallet_address))
        healthy = alert_service.create_alert(risk_alert(sample_wallet_address, "EXCEEDS", 10))

        report = await alert_service.check_alerts()

        assert report.checked == 2
        assert report.failed == 1
        assert report.triggered == 1
        assert broken.triggered is False
        assert broken.last_checked is None
        assert healthy.triggered is True
        assert healthy.last_checked is not None
        summary = error_collector.get_error_summary(hours=1)
        assert summary["total_errors"] == 1
        assert summary["lifetime_counts"] == {"ExternalAPIError": 1}

    @pytest.mark.asyncio
    async def test_latched_alert_is_not_reevaluated(self, alert_service, mock_data_provider,
                                                    sample_wallet_address):
        mock_data_provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=2.0)
        alert_service.create_alert(price_alert(sample_wallet_address))

        await alert_service.check_alerts()
        mock_data_provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=1.0)
        second = await alert_service.check_alerts()

        assert second.checked == 0
        assert len(alert_service.get_active_alerts(sample_wallet_address)) == 1
        assert len(alert_service.get_notifications()) == 1

    @pytest.mark.asyncio
    async def test_rearm_policy(self, alert_store, mock_data_provider, risk_calculator, sample_wallet_address):
        service = AlertService(alert_store, mock_data_provider, risk_calculator, trigger_policy="rearm")
        alert = service.create_alert(price_alert(sample_wallet_address))

        mock_data_provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=2.0)
        assert (await service.check_alerts()).triggered == 1

        # Still above: no duplicate notification
        assert (await service.check_alerts()).triggered == 0

        mock_data_provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=1.0)
        report = await service.check_alerts()
        assert report.rearmed == 1
        assert alert.triggered is False
        assert service.get_active_alerts(sample_wallet_address) == []

        mock_data_provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=2.0)
        assert (await service.check_alerts()).triggered == 1
        assert len(service.get_notifications(sample_wallet_address)) == 2

    @pytest.mark.asyncio
    async def test_alert_deleted_mid_pass_is_not_triggered(self, alert_service, mock_data_provider,
                                                           sample_wallet_address):
        alert = alert_service.create_alert(price_alert(sample_wallet_address))

        async def delete_then_answer(symbol):
            alert_service.delete_alert(alert.id)
            return TokenPrice(symbol=symbol, current=2.0)

        mock_data_provider.get_token_price.side_effect = delete_then_answer

        report = await alert_service.check_alerts()

        assert report.triggered == 0
        assert alert_service.get_notifications() == []
        assert alert_service.get_active_alerts(sample_wallet_address) == []

    @pytest.mark.asyncio
    async def test_empty_registry(self, alert_service):
        report = await alert_service.check_alerts()

        assert report.checked == 0
        assert report.failed == 0

    def test_notification_history_is_bounded(self, alert_store, mock_data_provider, risk_calculator,
                                             sample_wallet_address):
        service = AlertService(alert_store, mock_data_provider, risk_calculator)
        for _ in range(150):
            service.notify_user(service.create_alert(price_alert(sample_wallet_address)))

        assert len(service.get_notifications()) == 100

    def test_alert_messages(self, alert_service, sample_wallet_address):
        balance = alert_service.create_alert({
            "address": sample_wallet_address, "type": "BALANCE",
            "condition": "BELOW", "value": 10.5, "token": "ETH",
        })
        risk = alert_service.create_alert(risk_alert(sample_wallet_address, "EXCEEDS", 70))

        assert AlertService.get_alert_message(balance) == "ETH balance BELOW 10.5"
        assert AlertService.get_alert_message(risk) == "Portfolio risk EXCEEDS threshold"
        assert AlertService.get_alert_severity(balance) == Severity.MEDIUM
        assert AlertService.get_alert_severity(risk) == Severity.HIGH
