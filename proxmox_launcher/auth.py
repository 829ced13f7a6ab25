import hashlib
import hmac


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def is_authorized(authorization: str | None, expected_token: str | None) -> bool:
    if not expected_token:
        return True
    token = bearer_token(authorization)
    if token is None:
        return False
    return hmac.compare_digest(hash_token(token), hash_token(expected_token))
