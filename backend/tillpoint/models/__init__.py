from .tenancy import Branch
from .auth import User
from .inventory import Category, Product, StockMovement
from .promotions import Promotion, promotion_products, promotion_categories, promotion_branches
from .customers import Customer, LoyaltyTransaction
from .sales import Sale, SaleLine, Payment
from .documents import Return

__all__ = [
    'Branch',
    'User',
    'Category', 'Product', 'StockMovement',
    'Promotion', 'promotion_products', 'promotion_categories', 'promotion_branches',
    'Customer', 'LoyaltyTransaction',
    'Sale', 'SaleLine', 'Payment',
    'Return',
]
