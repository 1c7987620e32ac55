def _iso(dt):
    return dt.isoformat() if dt else None

def _money(value):
    return str(value) if value is not None else None

def user_json(u, include_private=False):
    data = {
        "id": u.id,
        "full_name": u.full_name,
        "is_helper": u.is_helper,
        "helper_profile": helper_profile_json(u.helper_profile) if u.helper_profile else None,
    }
    if include_private:
        data.update({
            "email": u.email,
            "phone_number": u.phone_number,
            "roles": [r.name for r in u.roles],
            "credits": u.credits,
            "is_active": u.is_active,
            "is_approved": u.is_approved,
            "created_at": _iso(u.created_at),
        })
    return data

def helper_profile_json(p):
    return {
        "hourly_rate": _money(p.hourly_rate),
        "rating": float(p.rating) if p.rating is not None else 0.0,
        "total_sessions": p.total_sessions,
        "experience_years": p.experience_years,
        "bio": p.bio,
        "specialties": list(p.specialties or []),
        "availability": dict(p.availability or {}),
    }

def booking_json(b):
    return {
        "id": b.id,
        "client_id": b.client_id,
        "helper_id": b.helper_id,
        "title": b.title,
        "description": b.description,
        "booking_type": b.booking_type,
        "specialty": b.specialty,
        "requirements": b.requirements,
        "scheduled_start": _iso(b.scheduled_start),
        "scheduled_end": _iso(b.scheduled_end),
        "duration_minutes": b.duration_minutes,
        "timezone": b.timezone,
        "hourly_rate": _money(b.hourly_rate_snapshot),
        "estimated_cost": _money(b.estimated_cost),
        "credits_reserved": b.credits_reserved,
        "status": b.status,
        "payment_status": b.payment_status,
        "actual_start": _iso(b.actual_start),
        "actual_end": _iso(b.actual_end),
        "actual_duration_minutes": b.actual_duration_minutes,
        "client_rating": b.client_rating,
        "client_feedback": b.client_feedback,
        "resolution": b.resolution,
        "notes": b.notes,
        "cancel_reason": b.cancel_reason,
        "cancelled_by": b.cancelled_by,
        "cancelled_at": _iso(b.cancelled_at),
        "created_at": _iso(b.created_at),
    }

def transaction_json(t):
    return {
        "id": t.id,
        "transaction_type": t.transaction_type,
        "status": t.status,
        "credits": t.credits,
        "amount": _money(t.amount),
        "balance_after": t.balance_after,
        "booking_id": t.booking_id,
        "package_id": t.package_id,
        "payment_id": t.payment_id,
        "description": t.description,
        "created_at": _iso(t.created_at),
        "expires_at": _iso(t.expires_at),
    }

def package_json(p):
    return {
        "id": p.id,
        "slug": p.slug,
        "name": p.name,
        "description": p.description,
        "credits": p.credits,
        "price": _money(p.price),
        "discount": p.discount,
        "is_popular": p.is_popular,
        "features": list(p.features or []),
        "validity_days": p.validity_days,
    }

def page_json(page):
    return {
        "page": page.page,
        "limit": page.per_page,
        "total": page.total,
        "pages": page.pages,
    }

def plan_json(plan):
    return {
        "id": plan["id"],
        "name": plan["name"],
        "description": plan.get("description"),
        "price": _money(plan["price"]),
        "credits": plan.get("credits"),
        "commission": plan.get("commission"),
        "billing_cycle": plan.get("billing_cycle", "MONTHLY"),
        "is_popular": bool(plan.get("is_popular", False)),
        "features": list(plan.get("features") or []),
    }

def subscription_json(s):
    return {
        "id": s.id,
        "plan_id": s.plan_id,
        "plan_name": s.plan_name,
        "audience": s.audience,
        "price": _money(s.price),
        "credits_per_cycle": s.credits_per_cycle,
        "commission_percent": s.commission_percent,
        "billing_cycle": s.billing_cycle,
        "status": s.status,
        "auto_renew": s.auto_renew,
        "start_date": _iso(s.start_date),
        "end_date": _iso(s.end_date),
        "next_billing_date": _iso(s.next_billing_date),
        "cancelled_at": _iso(s.cancelled_at),
        "cancel_reason": s.cancel_reason,
    }

def payment_json(p):
    return {
        "id": p.id,
        "amount": _money(p.amount),
        "currency": p.currency,
        "status": p.status,
        "provider": p.provider,
        "package_id": p.package_id,
        "subscription_id": p.subscription_id,
        "description": p.subscription.plan_name if p.subscription else (p.package.name if p.package else None),
        "created_at": _iso(p.created_at),
        "paid_at": _iso(p.paid_at),
    }
