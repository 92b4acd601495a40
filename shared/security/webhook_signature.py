"""
Authentication of inbound payment gateway callbacks.

The gateway posts the invoice state together with a ``verify_hash`` field:
HMAC-SHA1 keyed with the merchant secret over the compact JSON encoding of
every other field, keys sorted. Callbacks must be requested with
``json=true`` on the callback URL for this encoding to apply.
"""
import hashlib
import hmac
import json
from typing import Any, Mapping

import structlog

log = structlog.get_logger(__name__)

SIGNATURE_FIELD = "verify_hash"


def _canonical_body(payload: Mapping[str, Any]) -> bytes:
    body = {k: v for k, v in payload.items() if k != SIGNATURE_FIELD}
    return json.dumps(body, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


class CallbackSignatureVerifier:
    def __init__(self, secret: str, require_signature: bool = True):
        self.secret = secret or ""
        self.require_signature = require_signature

    def sign(self, payload: Mapping[str, Any]) -> str:
        return hmac.new(self.secret.encode("utf-8"), _canonical_body(payload), hashlib.sha1).hexdigest()

    def verify(self, payload: Mapping[str, Any]) -> bool:
        """Return True when the callback may be trusted.

        A missing hash (or a missing secret) is only tolerated when
        ``require_signature`` is off, i.e. outside production.
        """
        received = payload.get(SIGNATURE_FIELD)
        if not self.secret:
            log.error("callback_secret_not_configured")
            if self.require_signature:
                return False
            # Nothing to check a hash against; treated as an unsigned callback
            received = None

        if not received:
            if self.require_signature:
                log.warning("callback_signature_missing")
                return False
            log.warning("callback_signature_missing_accepted", hash_ignored=SIGNATURE_FIELD in payload)
            return True

        expected = self.sign(payload)
        if not hmac.compare_digest(str(received).lower(), expected):
            log.warning("callback_signature_mismatch")
            return False
        return True
