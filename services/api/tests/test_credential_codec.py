from datetime import datetime, timedelta, timezone

import jwt
import pytest

from nadmin_api.core.security import (
    CredentialCodec,
    TokenClaims,
    TokenError,
    extract_bearer_token,
    get_credential_codec,
)

SECRET = "codec-test-secret-key-at-least-32-bytes"
T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


def _claims(**overrides) -> TokenClaims:
    values = {
        "principal_id": "0b7f8a8e-0000-4000-8000-000000000001",
        "tenant_id": "acme",
        "role_id": "0b7f8a8e-0000-4000-8000-0000000000aa",
        "is_super_admin": False,
        "email": "alice@example.com",
        "username": "alice",
    }
    values.update(overrides)
    return TokenClaims(**values)


def test_sign_then_verify_returns_claims():
    codec = CredentialCodec(SECRET)
    token = codec.sign(_claims(session_id="sid-1"), timedelta(minutes=5), now=T0)

    result = codec.verify(token, now=T0 + timedelta(minutes=1))

    assert result.ok
    assert result.error is None
    assert result.claims.principal_id == "0b7f8a8e-0000-4000-8000-000000000001"
    assert result.claims.tenant_id == "acme"
    assert result.claims.email == "alice@example.com"
    assert result.claims.issued_at == int(T0.timestamp())
    assert result.claims.expires_at == int((T0 + timedelta(minutes=5)).timestamp())
    assert result.claims.session_id == "sid-1"


def test_token_valid_before_expiry_and_expired_at_or_after():
    codec = CredentialCodec(SECRET)
    token = codec.sign(_claims(), timedelta(seconds=60), now=T0)
    expiry = T0 + timedelta(seconds=60)

    assert codec.verify(token, now=expiry - timedelta(seconds=1)).ok
    for moment in (expiry, expiry + timedelta(seconds=1), expiry + timedelta(days=3)):
        result = codec.verify(token, now=moment)
        assert not result.ok
        assert result.error == TokenError.EXPIRED


def test_leeway_extends_acceptance_window():
    codec = CredentialCodec(SECRET, leeway_seconds=30)
    token = codec.sign(_claims(), timedelta(seconds=60), now=T0)

    assert codec.verify(token, now=T0 + timedelta(seconds=80)).ok
    assert codec.verify(token, now=T0 + timedelta(seconds=90)).error == TokenError.EXPIRED


def test_wrong_key_is_invalid_signature():
    token = CredentialCodec("another-secret-key-also-at-least-32-bytes").sign(_claims(), timedelta(minutes=5), now=T0)

    result = CredentialCodec(SECRET).verify(token, now=T0)

    assert result.error == TokenError.INVALID_SIGNATURE
    assert result.claims is None


@pytest.mark.parametrize("token", ["", "   ", None, "not-a-token", "a.b.c"])
def test_structurally_broken_token_is_malformed(token):
    assert CredentialCodec(SECRET).verify(token, now=T0).error == TokenError.MALFORMED


def test_missing_required_claims_is_malformed():
    codec = CredentialCodec(SECRET)
    exp = int((T0 + timedelta(minutes=5)).timestamp())

    without_id = jwt.encode({"tenantId": "acme", "exp": exp}, SECRET, algorithm="HS256")
    without_exp = jwt.encode({"id": "u-1"}, SECRET, algorithm="HS256")

    assert codec.verify(without_id, now=T0).error == TokenError.MALFORMED
    assert codec.verify(without_exp, now=T0).error == TokenError.MALFORMED


def test_super_admin_flag_requires_real_boolean():
    exp = int((T0 + timedelta(minutes=5)).timestamp())
    token = jwt.encode({"id": "u-1", "isSuperAdmin": "true", "exp": exp}, SECRET, algorithm="HS256")

    result = CredentialCodec(SECRET).verify(token, now=T0)

    assert result.ok
    assert result.claims.is_super_admin is False


def test_codec_requires_secret():
    with pytest.raises(ValueError):
        CredentialCodec("")


def test_process_codec_is_built_once_from_settings():
    assert get_credential_codec() is get_credential_codec()


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, None),
        ("", None),
        ("Basic dXNlcjpwYXNz", None),
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc.def.ghi", "abc.def.ghi"),
        ("Bearer first, Bearer second", "second"),
        ("Bearer real-token, Bearer {{token}}", "real-token"),
        ("Bearer ${TOKEN}", None),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected
