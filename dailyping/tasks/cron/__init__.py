from .subscription_reconciliation import subscription_reconciliation_task
from .trigger_tick import trigger_tick_task

__all__ = [
    "trigger_tick_task",
    "subscription_reconciliation_task",
]
