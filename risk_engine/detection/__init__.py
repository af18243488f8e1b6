# Risk factor analyzers
from .detector import AnalysisContext, BaseAnalyzer, DetectionEngine, FactorScore
from .velocity import VelocityAnalyzer
from .geo import GeographicAnalyzer, haversine_km
from .behavioral import BehavioralAnalyzer, local_hour
from .payment import PaymentAnalyzer
from .user_history import UserHistoryAnalyzer
from .device import DeviceAnalyzer
from .booking import BookingPatternAnalyzer


def default_analyzers() -> list[BaseAnalyzer]:
    """One rule-based analyzer per risk factor."""
    return [
        VelocityAnalyzer(),
        GeographicAnalyzer(),
        BehavioralAnalyzer(),
        PaymentAnalyzer(),
        UserHistoryAnalyzer(),
        DeviceAnalyzer(),
        BookingPatternAnalyzer(),
    ]


__all__ = [
    "AnalysisContext",
    "BaseAnalyzer",
    "DetectionEngine",
    "FactorScore",
    "VelocityAnalyzer",
    "GeographicAnalyzer",
    "BehavioralAnalyzer",
    "PaymentAnalyzer",
    "UserHistoryAnalyzer",
    "DeviceAnalyzer",
    "BookingPatternAnalyzer",
    "default_analyzers",
    "haversine_km",
    "local_hour",
]
