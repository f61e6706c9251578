"""Service modules"""
from .monitor import Monitor
from .position_service import PositionService
from .scheduler import InFlightGuard, PollingTask, Scheduler, SessionContext
from .transactions import TransactionManager, TxResult, TxStatus

__all__ = [
    "InFlightGuard",
    "Monitor",
    "PollingTask",
    "PositionService",
    "Scheduler",
    "SessionContext",
    "TransactionManager",
    "TxResult",
    "TxStatus",
]
