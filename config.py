import os
from decimal import Decimal

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as helperhub.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "helperhub.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "helperhub_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 30 minutes
    IDLE_TIMEOUT_SECONDS = 30 * 60

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    PASSWORD_MIN_LENGTH = 6
    BCRYPT_ROUNDS = 12

    # Booking policy
    CANCEL_LEAD_HOURS = 2
    START_LEAD_MINUTES = 15
    MIN_DURATION_MINUTES = 15
    MAX_DURATION_MINUTES = 480
    DEFAULT_TIMEZONE = "America/Sao_Paulo"

    # Credits: 1 credit = R$ 10
    CREDIT_UNIT_VALUE = Decimal(os.getenv("CREDIT_UNIT_VALUE", "10"))
    DEFAULT_HOURLY_RATE = Decimal(os.getenv("DEFAULT_HOURLY_RATE", "80"))
    EXPIRING_CREDITS_WINDOW_DAYS = 30
    CURRENCY = "BRL"

    # Catalog synced into credit_packages by `flask seed-packages`
    CREDIT_PACKAGES = [
        {
            "slug": "basic",
            "name": "Basic Pack",
            "description": "For occasional use",
            "credits": 10,
            "price": "89.90",
            "discount": 0,
            "is_popular": False,
            "features": ["10 credits", "Basic support", "Valid for 90 days"],
            "validity_days": 90,
        },
        {
            "slug": "popular",
            "name": "Popular Pack",
            "description": "Best value",
            "credits": 25,
            "price": "199.90",
            "discount": 10,
            "is_popular": True,
            "features": ["25 credits", "Priority support", "Valid for 120 days", "10% off"],
            "validity_days": 120,
        },
        {
            "slug": "premium",
            "name": "Premium Pack",
            "description": "For heavy use",
            "credits": 50,
            "price": "349.90",
            "discount": 20,
            "is_popular": False,
            "features": ["50 credits", "VIP support", "Valid for 180 days", "20% off"],
            "validity_days": 180,
        },
        {
            "slug": "business",
            "name": "Business Pack",
            "description": "For companies and teams",
            "credits": 100,
            "price": "599.90",
            "discount": 30,
            "is_popular": False,
            "features": ["100 credits", "Dedicated support", "Valid for 365 days", "30% off"],
            "validity_days": 365,
        },
    ]

    # Subscription plans per audience; a plan's credits land in the ledger once per paid cycle
    SUBSCRIPTION_PLANS = {
        "client": [
            {
                "id": "client_basic",
                "name": "Basic",
                "description": "For personal use",
                "price": "29.90",
                "credits": 50,
                "billing_cycle": "MONTHLY",
                "is_popular": False,
                "features": ["50 credits per month", "Basic support", "Certified helpers", "Session history"],
            },
            {
                "id": "client_premium",
                "name": "Premium",
                "description": "For small businesses",
                "price": "59.90",
                "credits": 120,
                "billing_cycle": "MONTHLY",
                "is_popular": True,
                "features": ["120 credits per month", "Priority support", "Specialist helpers", "Detailed reports"],
            },
            {
                "id": "client_enterprise",
                "name": "Enterprise",
                "description": "For large operations",
                "price": "149.90",
                "credits": 350,
                "billing_cycle": "MONTHLY",
                "is_popular": False,
                "features": ["350 credits per month", "24/7 support", "Dedicated helpers", "Guaranteed SLA"],
            },
        ],
        "helper": [
            {
                "id": "helper_basic",
                "name": "Basic",
                "description": "For new helpers",
                "price": "19.90",
                "commission": 70,
                "billing_cycle": "MONTHLY",
                "is_popular": False,
                "features": ["70% commission", "Basic profile", "Email support"],
            },
            {
                "id": "helper_professional",
                "name": "Professional",
                "description": "For experienced helpers",
                "price": "39.90",
                "commission": 80,
                "billing_cycle": "MONTHLY",
                "is_popular": True,
                "features": ["80% commission", "Featured profile", "Priority support"],
            },
            {
                "id": "helper_expert",
                "name": "Expert",
                "description": "For specialists",
                "price": "79.90",
                "commission": 85,
                "billing_cycle": "MONTHLY",
                "is_popular": False,
                "features": ["85% commission", "Premium profile", "Dedicated support", "Specialist badge"],
            },
        ],
    }

    # Payments
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")
    # Complete purchases instantly without Stripe (local development only)
    CREDITS_TEST_MODE = os.getenv("CREDITS_TEST_MODE", "false").lower() in {"1", "true", "yes"}

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Insert default roles when the app starts
    SEED_ON_STARTUP = True

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_dummy"
    CREDITS_TEST_MODE = False
    LOG_LEVEL = "DEBUG"
    BCRYPT_ROUNDS = 4
    # tests create the schema themselves
    SEED_ON_STARTUP = False
