"""
Escalate manual reviews that exceeded their SLA.

Intended to run as a cron/job every few minutes against PostgreSQL.
Each overdue pending entry is bumped one priority level and an alert
is written for the operators.
"""

import asyncio

from risk_engine.config import settings
from risk_engine.repositories import FanOutNotificationSink, LoggingNotificationSink
from risk_engine.repositories.postgres import (
    PostgresAlertSink,
    PostgresDatabase,
    PostgresReviewStore,
    PostgresTransactionRepository,
)
from risk_engine.review import ManualReviewWorkflow
from risk_engine.utils.logger import get_logger


async def escalate() -> int:
    database = PostgresDatabase(settings.postgres_url)
    await database.initialize()
    try:
        workflow = ManualReviewWorkflow(
            reviews=PostgresReviewStore(database),
            transactions=PostgresTransactionRepository(database),
            notifications=FanOutNotificationSink([
                LoggingNotificationSink(),
                PostgresAlertSink(database),
            ]),
            sla_hours=settings.review_sla_hours,
        )
        escalated = await workflow.escalate_stale()
        return len(escalated)
    finally:
        await database.close()


if __name__ == "__main__":
    get_logger("risk_engine", settings.app_log_level)
    count = asyncio.run(escalate())
    print(f"Escalated {count} overdue manual review entries.")
