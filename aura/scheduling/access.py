"""
Subscription gating and assistant promo eligibility.
"""

import datetime

import jwt

# A salon whose subscription status was never recorded keeps its features.
# Onboarding writes the status late, and blocking a half-configured salon
# would stop its clients from booking.
ACCESS_WHEN_STATUS_UNKNOWN = True

PROMO_AUDIENCE = "assistant-promo"


def has_feature_access(salon, now: datetime.datetime) -> bool:
    if salon.subscription_plan == "lifetime":
        return True

    status = salon.subscription_status
    if not status:
        return ACCESS_WHEN_STATUS_UNKNOWN
    if status == "active":
        return True
    if status == "trialing":
        if salon.trial_ends_at is None:
            return ACCESS_WHEN_STATUS_UNKNOWN
        return now < salon.trial_ends_at
    return False


def has_assistant_access(salon, now: datetime.datetime) -> bool:
    return bool(salon.ai_enabled) and has_feature_access(salon, now)


def promo_discount_percent(salon, now, via_assistant: bool, promo_verified: bool) -> int:
    """Discount owed to a booking that came in through an assistant link.

    Both the link marker and the session's verified flag are required; the
    marker alone comes from the query string and proves nothing.
    """
    if not (via_assistant and promo_verified):
        return 0
    if not has_assistant_access(salon, now):
        return 0
    percent = salon.ai_promo_discount or 0
    return int(percent) if percent > 0 else 0


def issue_promo_token(salon_id: int, secret: str, ttl_hours: int, now=None) -> str:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "salon_id": salon_id,
        "aud": PROMO_AUDIENCE,
        "iat": now,
        "exp": now + datetime.timedelta(hours=ttl_hours),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_promo_token(token: str, salon_id: int, secret: str) -> bool:
    if not token:
        return False
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"], audience=PROMO_AUDIENCE)
    except jwt.PyJWTError:
        return False
    return payload.get("salon_id") == salon_id
