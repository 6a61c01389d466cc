"""Database module for order settlement persistence."""

from .models import (
    Order,
    CommissionRecord,
    SettlementEvent,
    Base,
    OrderStatus,
    SettlementAction,
    TERMINAL_STATUSES,
)
from .session import (
    get_db,
    get_database_url,
    get_session_factory,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
)
from .repository import (
    OrderRepository,
    CommissionRepository,
    SettlementEventRepository,
)

__all__ = [
    # Models
    "Order",
    "CommissionRecord",
    "SettlementEvent",
    "Base",
    "OrderStatus",
    "SettlementAction",
    "TERMINAL_STATUSES",
    # Session management
    "get_db",
    "get_database_url",
    "get_session_factory",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    # Repositories
    "OrderRepository",
    "CommissionRepository",
    "SettlementEventRepository",
]
