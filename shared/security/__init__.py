from .api_key import verify_api_key
from .dependencies import verify_internal_api_key
from .rate_limiter import limiter, user_id_or_ip
from .webhook_signature import CallbackSignatureVerifier

__all__ = [
    "verify_api_key",
    "verify_internal_api_key",
    "limiter",
    "user_id_or_ip",
    "CallbackSignatureVerifier",
]
