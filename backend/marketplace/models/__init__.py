from .users import User, Entity
from .properties import Property
from .offers import Offer
from .transactions import Transaction, TransactionEvent
from .reviews import Review, ReviewDispute
from .events import DomainEvent

__all__ = [
    'User', 'Entity',
    'Property',
    'Offer',
    'Transaction', 'TransactionEvent',
    'Review', 'ReviewDispute',
    'DomainEvent',
]
