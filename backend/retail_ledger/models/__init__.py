from .catalog import Product, Variant, Supplier, Customer
from .orders import Order, OrderLine
from .returns import Return
from .movements import StockMovement

__all__ = [
    'Product', 'Variant', 'Supplier', 'Customer',
    'Order', 'OrderLine',
    'Return',
    'StockMovement',
]
