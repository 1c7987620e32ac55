from .health import health_bp
from .auth import auth_bp
from .helpers import helpers_bp
from .bookings import bookings_bp
from .credits import credits_bp
from .stripe_webhook import webhook_bp
from .admin import admin_bp
from .audit_logs import audit_bp
from .subscriptions import subscriptions_bp
