from models.db import db
from utils import clock

class CreditPackage(db.Model):
    __tablename__ = "credit_packages"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(60), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=False)

    credits = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)  # BRL
    discount = db.Column(db.Integer, nullable=False, default=0)  # percent

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_popular = db.Column(db.Boolean, default=False, nullable=False)
    features = db.Column(db.JSON, nullable=False, default=list)
    validity_days = db.Column(db.Integer, nullable=True)  # credits never expire when null

    created_at = db.Column(db.DateTime, default=clock.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("credits >= 1", name="ck_credit_packages_credits"),
        db.CheckConstraint("discount >= 0 AND discount <= 100", name="ck_credit_packages_discount"),
    )
