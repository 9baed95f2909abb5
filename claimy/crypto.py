import hashlib
import hmac
import secrets
import string
import time

PASSWORD_ALPHABET = string.ascii_letters + string.digits + "_-"
SIGNATURE_WINDOW_SECONDS = 60


def generate_email_from_jid(wa_jid: str, domain: str) -> str:
    """Synthetic, stable email address for a panel account. The JID is not recoverable from it."""
    digest = hashlib.sha256(wa_jid.encode("utf-8")).hexdigest()
    return f"{digest[:24]}@{domain}"


def generate_random_password(length: int = 32) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_claim_token() -> str:
    return secrets.token_hex(16)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token(token: str, token_hash: str) -> bool:
    return hmac.compare_digest(hash_token(token), token_hash)


def create_signature(secret: str, timestamp: str, body: bytes) -> str:
    """HMAC-SHA256 hex digest over "<timestamp>.<body>" """
    message = timestamp.encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, timestamp: str, body: bytes, signature: str) -> bool:
    expected = create_signature(secret, timestamp, body)
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_timestamp(
    timestamp: str,
    window_seconds: int = SIGNATURE_WINDOW_SECONDS,
    now: float | None = None,
) -> bool:
    """Check a unix timestamp (seconds or milliseconds) is within the window of now"""
    try:
        value = float(timestamp)
    except (TypeError, ValueError):
        return False
    if value > 1e11:
        value /= 1000
    if now is None:
        now = time.time()
    return abs(now - value) <= window_seconds
