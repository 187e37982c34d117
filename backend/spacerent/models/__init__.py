from spacerent.models.payment_receipt import PaymentReceipt
from spacerent.models.space import Space
from spacerent.models.space_entry_payment import SpaceEntryPayment
from spacerent.models.space_visitor import SpaceVisitor

__all__ = [
    "PaymentReceipt",
    "Space",
    "SpaceEntryPayment",
    "SpaceVisitor",
]
