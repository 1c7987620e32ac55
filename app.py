import logging

import click
from flask import Flask, request, g, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import User, Role
from routes import health_bp, auth_bp, helpers_bp, bookings_bp, credits_bp, webhook_bp, admin_bp, audit_bp, subscriptions_bp
from security.csrf import require_csrf
from services import ledger
from services.errors import BookingError
from services.signals import booking_started, booking_completed
from utils.audit import log_event
from utils.auth_context import load_current_user
from utils.seed import seed_roles, sync_credit_packages

logger = logging.getLogger(__name__)

CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/auth/register",
    "/health",
    "/webhooks/stripe",
}


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger().setLevel(app.config.get("LOG_LEVEL", "INFO"))

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(helpers_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(credits_bp)
    app.register_blueprint(subscriptions_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(audit_bp)

    db.init_app(app)
    Migrate(app, db)

    # expects a migrated database (`flask db upgrade`)
    if app.config.get("SEED_ON_STARTUP", True):
        with app.app_context():
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        # only state-changing requests of an authenticated cookie session
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.path in CSRF_EXEMPT_PATHS:
                return None
            if getattr(g, "user", None) is not None:
                failure = require_csrf()
                if failure:
                    return failure
        return None

    @app.errorhandler(BookingError)
    def _booking_error(err):
        db.session.rollback()
        if err.status_code >= 500:
            logger.error("%s on %s %s: %s", err.code, request.method, request.path, err.message)
        else:
            logger.info("%s on %s %s: %s", err.code, request.method, request.path, err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_signal_receivers()
    register_cli(app)

    return app

#-------------------------

def _on_call_opened(sender, booking, **extra):
    logger.info("booking %s started, call may be established", booking.id)
    log_event("CALL_OPENED", actor_id=booking.helper_id, entity="booking", entity_id=booking.id)


def _on_call_closed(sender, booking, **extra):
    logger.info("booking %s completed, call must be closed", booking.id)
    log_event("CALL_CLOSED", actor_id=booking.helper_id, entity="booking", entity_id=booking.id,
              metadata={"actual_duration_minutes": booking.actual_duration_minutes})


def register_signal_receivers():
    """Audit trail for call lifecycle events; an external relay may connect its own receivers."""
    # module-level receivers: connecting again for another app is a no-op
    booking_started.connect(_on_call_opened)
    booking_completed.connect(_on_call_closed)

#-------------------------

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name="ADMIN").first()
        if not admin_role:
            admin_role = Role(name="ADMIN")
            db.session.add(admin_role)

        if admin_role not in user.roles:
            user.roles.append(admin_role)
        db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("approve-helper")
    @click.argument("email")
    def approve_helper(email):
        """Approve a pending helper profile by email."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user or not user.is_helper:
            click.echo("Helper not found")
            return
        user.is_approved = True
        db.session.commit()
        log_event("CLI_APPROVE_HELPER", entity="user", entity_id=user.id)
        click.echo(f"{user.email} approved as helper")

    @app.cli.command("seed-packages")
    def seed_packages():
        """Sync credit_packages with the configured catalog."""
        created, updated, deactivated = sync_credit_packages(app.config.get("CREDIT_PACKAGES"))
        click.echo(f"packages: {created} created, {updated} updated, {deactivated} deactivated")

    @app.cli.command("check-balances")
    def check_balances():
        """Report users whose cached credits differ from their ledger sum."""
        mismatches = 0
        for user in User.query.order_by(User.id.asc()).all():
            cached, from_ledger = ledger.verify_balance(user.id)
            if cached != from_ledger:
                mismatches += 1
                click.echo(f"user {user.id} <{user.email}>: cached={cached} ledger={from_ledger}")
        click.echo(f"{mismatches} mismatch(es)")
        if mismatches:
            raise SystemExit(1)

#-------------------------


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5002)
