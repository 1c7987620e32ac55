from decimal import Decimal

from models import db
from models.credit_package import CreditPackage
from models.user import Role

DEFAULT_ROLES = ["MEMBER", "ADMIN"]

_PACKAGE_FIELDS = ("name", "description", "credits", "discount", "is_popular", "features", "validity_days")

def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()

def sync_credit_packages(catalog) -> tuple:
    """
    Upserts the configured catalog by slug. Packages that disappeared from
    the catalog are deactivated, never deleted (ledger rows reference them).
    Returns (created, updated, deactivated).
    """
    created = updated = deactivated = 0
    slugs = set()

    for item in catalog or []:
        slug = item["slug"]
        slugs.add(slug)
        pkg = CreditPackage.query.filter_by(slug=slug).first()
        if pkg is None:
            pkg = CreditPackage(slug=slug)
            db.session.add(pkg)
            created += 1
        else:
            updated += 1
        for field in _PACKAGE_FIELDS:
            if field in item:
                setattr(pkg, field, item[field])
        pkg.price = Decimal(str(item["price"]))
        pkg.is_active = True

    for pkg in CreditPackage.query.filter(CreditPackage.is_active.is_(True)).all():
        if pkg.slug not in slugs:
            pkg.is_active = False
            deactivated += 1

    db.session.commit()
    return created, updated, deactivated
