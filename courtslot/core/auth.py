"""JWT handling: caller access tokens and participant confirmation tokens."""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from courtslot.core.config import settings


def create_access_token(subject: str, extra: dict | None = None) -> str:
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": subject, "exp": expire, "type": "access"}
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# Participant confirmation tokens
# ---------------------------------------------------------------------------


def create_confirmation_token(reservation_id: int, email: str, now: datetime | None = None) -> str:
    """Sign a confirmation link token for one invited participant.

    The token expires on its own after confirmation_token_expire_minutes,
    independently of whether the sweep has already auto-cancelled the booking.
    """
    issued = now or datetime.now(UTC)
    expire = issued + timedelta(minutes=settings.confirmation_token_expire_minutes)
    payload = {
        "sub": str(reservation_id),
        "email": email,
        "type": "confirm",
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def verify_confirmation_token(token: str) -> dict:
    """Decode a confirmation token. Returns {"reservation_id": int, "email": str}.

    Raises JWTError on invalid/expired tokens or wrong type.
    """
    payload = decode_token(token)
    if payload.get("type") != "confirm":
        raise JWTError("Invalid token type")
    try:
        return {"reservation_id": int(payload["sub"]), "email": payload["email"].strip().lower()}
    except (KeyError, ValueError) as e:
        raise JWTError("Malformed confirmation token") from e
