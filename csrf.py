from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


CSRF_HEADER = "X-CSRF-Token"
DEFAULT_MAX_AGE_SECS = 2 * 3600


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="csrf-token")


def generate_csrf_token() -> str:
    return _serializer().dumps({"scope": "api"})


def validate_csrf_token(token: str, max_age_secs: int = DEFAULT_MAX_AGE_SECS) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except SignatureExpired:
        return False
    except BadSignature:
        return False
    return isinstance(data, dict) and data.get("scope") == "api"
