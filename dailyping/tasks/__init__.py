from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "trigger_tick_task",
    "subscription_reconciliation_task",
]
