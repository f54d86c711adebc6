from .catalog import Category, Product, BundleOffer
from .orders import Address, Order, OrderLine
from .inventory import StockMovement
from .finance import Expense, Return, ReturnLine

__all__ = [
    'Category', 'Product', 'BundleOffer',
    'Address', 'Order', 'OrderLine',
    'StockMovement',
    'Expense', 'Return', 'ReturnLine',
]
