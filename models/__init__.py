from .db import db
from .user import User, Role, user_roles
from .helper_profile import HelperProfile
from .booking import Booking, BookingStatus, PaymentStatus
from .credit_package import CreditPackage
from .subscription import Subscription, SubscriptionStatus
from .payment import Payment
from .credit_transaction import CreditTransaction, TransactionType, TransactionStatus
from .audit_log import AuditLog
from .session import AuthSession
