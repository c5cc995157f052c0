from .auth import User, SessionToken, ROLE_ADMIN, ROLE_SELLER, VALID_ROLES
from .catalog import Product
from .orders import Order, OrderItem, OrderSequence, BalanceLedgerEntry
from .messaging import Conversation, Message

__all__ = [
    'User', 'SessionToken', 'ROLE_ADMIN', 'ROLE_SELLER', 'VALID_ROLES',
    'Product',
    'Order', 'OrderItem', 'OrderSequence', 'BalanceLedgerEntry',
    'Conversation', 'Message',
]
