from models.db import db
from utils import clock

# association table for many-to-many User <-> Role
user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id"), primary_key=True),
)

class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(100), nullable=False)
    phone_number = db.Column(db.String(30), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    # false while a helper profile waits for admin approval
    is_approved = db.Column(db.Boolean, default=True, nullable=False)

    # cached projection of the credit ledger, written only by services.ledger
    credits = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=clock.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=clock.utcnow, onupdate=clock.utcnow, nullable=False)
    version = db.Column(db.Integer, nullable=False)

    roles = db.relationship("Role", secondary=user_roles, back_populates="users")
    helper_profile = db.relationship(
        "HelperProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_helper(self) -> bool:
        return self.helper_profile is not None

    def has_role(self, name: str) -> bool:
        return any(r.name == name for r in self.roles)

class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)  # e.g. MEMBER, ADMIN

    users = db.relationship("User", secondary=user_roles, back_populates="roles")
