# Manual review workflow
from .workflow import ManualReviewWorkflow, DECISIONS, DEFAULT_SLA_HOURS

__all__ = ["ManualReviewWorkflow", "DECISIONS", "DEFAULT_SLA_HOURS"]
