"""
Error taxonomy and error bookkeeping for the monitoring service
"""
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, Optional

import structlog

logger = structlog.get_logger()


class WalletGuardError(Exception):
    """Base class for service errors"""
    pass


class ExternalAPIError(WalletGuardError):
    """Raised when the wallet/market data provider cannot be reached or fails"""
    pass


class InvalidInputError(WalletGuardError, ValueError):
    """Raised when input validation fails"""
    pass


class RiskCalculationError(WalletGuardError):
    """Raised when risk calculations fail"""
    pass


class ErrorCollector:
    """Collects and analyzes errors for better observability"""

    def __init__(self, max_errors: int = 1000):
        self.errors: Deque[Dict[str, Any]] = deque(maxlen=max_errors)
        self.error_counts: Dict[str, int] = {}

    def record_error(self, error: Exception, context: Optional[Dict[str, Any]] = None):
        """Record an error with context"""
        error_type = type(error).__name__
        self.errors.append({
            "timestamp": datetime.now(timezone.utc),
            "type": error_type,
            "message": str(error),
            "context": context or {},
        })
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        logger.error(
            "Error recorded",
            error_type=error_type,
            error_message=str(error),
            context=context,
        )

    def get_error_summary(self, hours: int = 24) -> Dict:
        """Get error summary for the last N hours"""
        cutoff_time = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent_errors = [error for error in self.errors if error["timestamp"] > cutoff_time]

        error_types: Dict[str, Dict[str, Any]] = {}
        for error in recent_errors:
            entry = error_types.setdefault(error["type"], {"count": 0, "examples": []})
            entry["count"] += 1
            if len(entry["examples"]) < 3:
                entry["examples"].append({
                    "message": error["message"],
                    "timestamp": error["timestamp"].isoformat(),
                    "context": error["context"],
                })

        return {
            "time_window_hours": hours,
            "total_errors": len(recent_errors),
            "lifetime_counts": dict(self.error_counts),
            "error_types": error_types,
            "most_common_errors": sorted(
                error_types.items(),
                key=lambda x: x[1]["count"],
                reverse=True
            )[:5]
        }
