# Collaborator interfaces and adapters
from .base import (
    AnalysisStore,
    HistoryRepository,
    NotificationSink,
    ReputationService,
    ReviewStore,
    TransactionRepository,
)
from .memory import (
    InMemoryAnalysisStore,
    InMemoryHistoryRepository,
    InMemoryNotificationSink,
    InMemoryReviewStore,
    InMemoryTransactionRepository,
)
from .reputation import StaticReputationService
from .notifications import (
    FanOutNotificationSink,
    LoggingNotificationSink,
    WebhookNotificationSink,
)

__all__ = [
    "AnalysisStore",
    "HistoryRepository",
    "NotificationSink",
    "ReputationService",
    "ReviewStore",
    "TransactionRepository",
    "InMemoryAnalysisStore",
    "InMemoryHistoryRepository",
    "InMemoryNotificationSink",
    "InMemoryReviewStore",
    "InMemoryTransactionRepository",
    "StaticReputationService",
    "FanOutNotificationSink",
    "LoggingNotificationSink",
    "WebhookNotificationSink",
]
