from .dispatcher import DeliveryDispatcher
from .ledger import NotificationLedger
from .trigger_evaluator import TriggerEvaluator, find_due_triggers

__all__ = [
    "DeliveryDispatcher",
    "NotificationLedger",
    "TriggerEvaluator",
    "find_due_triggers",
]
