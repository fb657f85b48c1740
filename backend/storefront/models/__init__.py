from .auth import User, SessionToken
from .security import SecurityEvent
from .catalog import Product, ProductVariant, Cart, CartItem
from .orders import Order, OrderItem, OrderTimeline
from .returns import OrderReturn
from .carts import AbandonedCart
from .inventory import InventoryAlert
from .settings import Setting

__all__ = [
    'User', 'SessionToken', 'SecurityEvent',
    'Product', 'ProductVariant', 'Cart', 'CartItem',
    'Order', 'OrderItem', 'OrderTimeline',
    'OrderReturn',
    'AbandonedCart',
    'InventoryAlert',
    'Setting',
]
