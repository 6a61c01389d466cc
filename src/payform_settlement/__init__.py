# payform_settlement package
__version__ = "0.1.0"

from .settings import Settings, get_settings
from .database import (
    Order,
    CommissionRecord,
    SettlementEvent,
    OrderStatus,
    SettlementAction,
    init_db,
    close_db,
    get_db,
)
from .services import OrderService, OrderRequest, OrderCreated

# Settlement exports
from .settlement import (
    FeeModel,
    Split,
    compute,
    PaymentNotification,
    ReconciliationResult,
    SettlementError,
)
from .settlement.ledger import SettlementLedger, LedgerOutcome
from .settlement.service import ReconciliationService
