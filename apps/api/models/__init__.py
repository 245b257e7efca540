"""Models package."""

from .user import User
from .image_description import ImageDescription
from .credit_transaction import CreditTransaction
from .payment_request import PaymentRequest
from .setting import Setting
