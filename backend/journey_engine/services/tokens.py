import logging
from urllib.parse import quote
from itsdangerous import URLSafeTimedSerializer, SignatureExpired, BadSignature

from journey_engine.config import SECRET_KEY, API_PUBLIC_URL, OPT_OUT_TOKEN_MAX_AGE

logger = logging.getLogger(__name__)

serializer = URLSafeTimedSerializer(SECRET_KEY, salt="journey-opt-out")


class InvalidToken(Exception):
    pass


def make_opt_out_token(run_id: str, contact_id: str) -> str:
    return serializer.dumps({"run_id": run_id, "contact_id": contact_id, "type": "opt_out"})


def read_opt_out_token(token: str, max_age: int = OPT_OUT_TOKEN_MAX_AGE) -> dict:
    """Return the token payload, or raise InvalidToken if it is expired, tampered with or of the wrong type."""
    try:
        data = serializer.loads(token, max_age=max_age)
    except SignatureExpired:
        logger.warning("[TOKEN] Expired opt-out token received")
        raise InvalidToken("Opt-out link has expired")
    except BadSignature:
        logger.warning("[TOKEN] Invalid opt-out token received")
        raise InvalidToken("Opt-out link is invalid")

    if not isinstance(data, dict) or data.get("type") != "opt_out" or not data.get("run_id"):
        raise InvalidToken("Opt-out link is invalid")
    return data


def opt_out_url(run_id: str, contact_id: str) -> str:
    token = make_opt_out_token(run_id, contact_id)
    return f"{API_PUBLIC_URL}/api/runs/opt-out?token={quote(token, safe='')}"
