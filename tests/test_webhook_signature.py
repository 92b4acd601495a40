import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest

from shared.security import CallbackSignatureVerifier, webhook_signature

SECRET = "plisio_secret_12345"


@pytest.fixture
def callback_payload():
    return {
        "txn_id": "t1",
        "order_number": "order_abc",
        "status": "completed",
        "amount": "1.00000000",
        "currency": "USDT",
    }


def signed(payload, secret=SECRET):
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha1).hexdigest()
    return {**payload, "verify_hash": digest}


class TestProductionVerifier:

    @pytest.fixture
    def verifier(self):
        return CallbackSignatureVerifier(SECRET, require_signature=True)

    def test_valid_signature_accepted(self, verifier, callback_payload):
        assert verifier.verify(signed(callback_payload)) is True

    def test_sign_matches_independent_hmac(self, verifier, callback_payload):
        assert verifier.sign(callback_payload) == signed(callback_payload)["verify_hash"]

    def test_tampered_payload_rejected(self, verifier, callback_payload):
        payload = signed(callback_payload)
        payload["amount"] = "1000"
        assert verifier.verify(payload) is False

    def test_wrong_secret_rejected(self, verifier, callback_payload):
        assert verifier.verify(signed(callback_payload, secret="other")) is False

    def test_missing_signature_rejected(self, verifier, callback_payload):
        assert verifier.verify(callback_payload) is False

    def test_missing_secret_rejects(self, callback_payload):
        verifier = CallbackSignatureVerifier("", require_signature=True)
        assert verifier.verify(signed(callback_payload)) is False


class TestDevelopmentVerifier:

    @pytest.fixture
    def verifier(self):
        return CallbackSignatureVerifier(SECRET, require_signature=False)

    def test_missing_signature_allowed(self, verifier, callback_payload):
        assert verifier.verify(callback_payload) is True

    def test_bad_signature_still_rejected(self, verifier, callback_payload):
        assert verifier.verify({**callback_payload, "verify_hash": "deadbeef"}) is False

    def test_hash_without_secret_is_treated_as_unsigned(self, callback_payload, monkeypatch):
        log = MagicMock()
        monkeypatch.setattr(webhook_signature, "log", log)
        verifier = CallbackSignatureVerifier("", require_signature=False)

        assert verifier.verify({**callback_payload, "verify_hash": "garbage"}) is True

        log.error.assert_called_once_with("callback_secret_not_configured")
        log.warning.assert_called_once_with("callback_signature_missing_accepted", hash_ignored=True)
