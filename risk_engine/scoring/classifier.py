"""
Risk Level Classifier

Maps a composite score onto a risk level, scanning from the most
severe threshold down:

    score >= critical -> CRITICAL
    score >= medium   -> HIGH
    score >= low      -> MEDIUM
    otherwise         -> LOW

The `high` threshold sits inside the HIGH band; it does not change the
level but marks analyses for high-priority review.
"""

from ..policy import RiskThresholds
from ..schemas import RiskLevel


def classify(score: int, thresholds: RiskThresholds) -> RiskLevel:
    """Risk level for a composite score."""
    if score >= thresholds.critical:
        return RiskLevel.CRITICAL
    if score >= thresholds.medium:
        return RiskLevel.HIGH
    if score >= thresholds.low:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
