# Fraud reporting
from .report import FraudReportGenerator, parse_window, DEFAULT_WINDOW

__all__ = ["FraudReportGenerator", "parse_window", "DEFAULT_WINDOW"]
