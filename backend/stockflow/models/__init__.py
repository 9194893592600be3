from .auth import User, SessionToken
from .catalog import Category, Supplier, Location, Product
from .customers import Customer
from .documents import DocumentSequence, ActivityLog
from .inventory import StockMovement, StockLevel, Transfer
from .purchasing import Purchase, PurchaseItem
from .sales import Sale, SaleItem
from .settings import AppSetting

__all__ = [
    "User",
    "SessionToken",
    "Category",
    "Supplier",
    "Location",
    "Product",
    "Customer",
    "DocumentSequence",
    "ActivityLog",
    "StockMovement",
    "StockLevel",
    "Transfer",
    "Purchase",
    "PurchaseItem",
    "Sale",
    "SaleItem",
    "AppSetting",
]
