import re
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

WALLET_ADDRESS_PATTERN = re.compile(r'^(0x)?[0-9a-fA-F]{40}$')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertType(str, Enum):
    PRICE = "PRICE"
    RISK = "RISK"
    BALANCE = "BALANCE"
    TRANSACTION = "TRANSACTION"


class AlertCondition(str, Enum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    CHANGE_UP = "CHANGE_UP"
    CHANGE_DOWN = "CHANGE_DOWN"
    EXCEEDS = "EXCEEDS"
    LEVEL = "LEVEL"
    RISKY = "RISKY"


class AlertStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class Severity(str, Enum):
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


ALLOWED_CONDITIONS = {
    AlertType.PRICE: frozenset({
        AlertCondition.ABOVE, AlertCondition.BELOW,
        AlertCondition.CHANGE_UP, AlertCondition.CHANGE_DOWN,
    }),
    AlertType.RISK: frozenset({AlertCondition.EXCEEDS, AlertCondition.BELOW, AlertCondition.LEVEL}),
    AlertType.BALANCE: frozenset({AlertCondition.ABOVE, AlertCondition.BELOW}),
    AlertType.TRANSACTION: frozenset({AlertCondition.RISKY}),
}

TOKEN_REQUIRED_TYPES = frozenset({AlertType.PRICE, AlertType.BALANCE})


# Wallet / market data
class TokenHolding(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    symbol: str = Field(min_length=1)
    name: Optional[str] = None
    balance: Decimal = Decimal(0)
    value_usd: float = Field(default=0.0, ge=0, alias="valueUSD")
    contract_address: Optional[str] = Field(default=None, alias="contractAddress")
    decimals: Optional[int] = None


class Transaction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    hash: Optional[str] = None
    from_address: Optional[str] = Field(default=None, alias="from")
    to_address: Optional[str] = Field(default=None, alias="to")
    value: float = 0.0
    gas_used: int = Field(default=0, alias="gasUsed")
    token_transfers: List[Dict[str, Any]] = Field(default_factory=list, alias="tokenTransfers")
    timestamp: Optional[datetime] = None
    status: Optional[str] = None

    @field_validator("token_transfers", mode="before")
    @classmethod
    def default_transfers(cls, v):
        return v or []

    @field_validator("value", "gas_used", mode="before")
    @classmethod
    def default_numbers(cls, v):
        return 0 if v is None else v

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class TokenPrice(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    current: float
    change_24h: float = Field(default=0.0, alias="change24h")
    market_cap: Optional[float] = Field(default=None, alias="marketCap")
    volume_24h: Optional[float] = Field(default=None, alias="volume24h")


# Risk models
class RiskFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float
    status: str
    detail: Dict[str, Any] = {}


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    priority: str  # urgent, high, medium
    message: str
    action: str


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    level: RiskLevel
    factors: Dict[str, RiskFactor]
    recommendations: List[Recommendation] = []
    classification_version: str
    calculated_at: datetime = Field(default_factory=utcnow)


class TransactionRiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    level: RiskLevel
    warnings: List[str] = []
    should_alert: bool = False


# Alert models
class AlertCreate(BaseModel):
    address: str
    type: AlertType
    condition: AlertCondition
    value: Union[float, str]
    token: Optional[str] = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        if not WALLET_ADDRESS_PATTERN.match(v):
            raise ValueError("Invalid wallet address format")
        return v

    @field_validator("type", "condition", mode="before")
    @classmethod
    def normalize_enum_names(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("token")
    @classmethod
    def normalize_token(cls, v):
        return v.strip().upper() if v else None

    @model_validator(mode="after")
    def check_condition_and_value(self):
        if self.condition not in ALLOWED_CONDITIONS[self.type]:
            raise ValueError(
                f"Condition {self.condition.value} is not valid for {self.type.value} alerts"
            )

        if self.type in TOKEN_REQUIRED_TYPES and not self.token:
            raise ValueError(f"{self.type.value} alerts require a token")

        if self.condition is AlertCondition.LEVEL:
            try:
                self.value = RiskLevel(str(self.value).upper()).value
            except ValueError:
                raise ValueError("LEVEL alerts require one of LOW, MEDIUM, HIGH, CRITICAL")
        elif isinstance(self.value, str):
            try:
                self.value = float(self.value)
            except ValueError:
                raise ValueError("Alert value must be numeric")

        return self


class Alert(BaseModel):
    id: str
    address: str
    type: AlertType
    condition: AlertCondition
    value: Union[float, str]
    token: Optional[str] = None
    status: AlertStatus = AlertStatus.ACTIVE
    triggered: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    triggered_at: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    # Block timestamp of the newest transaction already scored (TRANSACTION alerts)
    last_seen_transaction_at: Optional[datetime] = None


class Notification(BaseModel):
    alert_id: str
    address: str
    type: AlertType
    message: str
    severity: Severity
    timestamp: datetime = Field(default_factory=utcnow)


class EvaluationReport(BaseModel):
    checked: int = 0
    triggered: int = 0
    failed: int = 0
    rearmed: int = 0
    duration_seconds: float = 0.0


class CacheStats(BaseModel):
    size: int
    keys: List[str]


# API Request/Response Models
class AlertsResponse(BaseModel):
    address: str
    alerts: List[Alert]
    total: int


class ActiveAlertsResponse(BaseModel):
    address: str
    active_alerts: List[Alert]
    count: int


class WalletRiskResponse(BaseModel):
    address: str
    total_value_usd: float
    token_count: int
    risk: RiskAssessment
    cached: bool = False


# Wallet views
class PricedTokenHolding(TokenHolding):
    price: Optional[float] = None
    change_24h: Optional[float] = Field(default=None, alias="change24h")
    market_cap: Optional[float] = Field(default=None, alias="marketCap")


class AnalyzedTransaction(Transaction):
    risk: TransactionRiskAssessment


class WalletOverview(BaseModel):
    address: str
    total_value_usd: float
    token_count: int
    tokens: List[TokenHolding]  # top holdings by value
    last_updated: datetime = Field(default_factory=utcnow)
    cached: bool = False


class TokenHoldingsResponse(BaseModel):
    address: str
    tokens: List[PricedTokenHolding]
    total_tokens: int


class TransactionHistoryResponse(BaseModel):
    address: str
    transactions: List[AnalyzedTransaction]
    total: int
    limit: int
    offset: int
