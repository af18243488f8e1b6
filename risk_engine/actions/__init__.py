# Security action execution
from .executor import SecurityActionExecutor, FRAUD_RISK_FLAG

__all__ = ["SecurityActionExecutor", "FRAUD_RISK_FLAG"]
