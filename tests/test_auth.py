import base64
import time

import jwt
import pytest
import responses
from cryptography.hazmat.primitives.asymmetric import rsa

from claimmapper.auth import (
    AuthError,
    extract_token_string,
    fetch_keys,
    find_key,
    get_token,
    get_unverified_token,
    parse_token,
    public_key_from_jwk,
    verify_token,
)

IDP_URL = "https://idp.example.com/realms/portal"
WELL_KNOWN_URL = IDP_URL + "/.well-known/openid-configuration"
JWKS_URL = IDP_URL + "/protocol/openid-connect/certs"
KEY_ID = "signing-key-1"


def _b64(number):
    raw = number.to_bytes((number.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def foreign_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwk(signing_key):
    numbers = signing_key.public_key().public_numbers()
    return {
        "kid": KEY_ID,
        "kty": "RSA",
        "alg": "RS256",
        "use": "sig",
        "n": _b64(numbers.n),
        "e": "AQAB",
    }


@pytest.fixture
def idp(jwk):
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        mock.add(responses.GET, WELL_KNOWN_URL, json={"issuer": IDP_URL, "jwks_uri": JWKS_URL})
        mock.add(responses.GET, JWKS_URL, json={"keys": [{"kid": "other", "kty": "EC"}, jwk]})
        yield mock


def _token(key, claims=None, kid=KEY_ID, algorithm="RS256"):
    payload = {"sub": "user-1", "exp": int(time.time()) + 300}
    payload.update(claims or {})
    return jwt.encode(payload, key, algorithm=algorithm, headers={"kid": kid})


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Bearer token", "token"),
        ("token", "token"),
        ("  Bearer   token  ", "token"),
        ("a b c", "a b c"),
        ("", ""),
    ],
)
def test_extract_token_string(value, expected):
    assert extract_token_string(value) == expected


def test_fetch_keys_follows_discovery(idp, jwk):
    keys = fetch_keys(IDP_URL)
    assert keys["keys"][1] == jwk
    assert [call.request.url for call in idp.calls] == [WELL_KNOWN_URL, JWKS_URL]


def test_fetch_keys_discovery_status():
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, WELL_KNOWN_URL, status=503)
        with pytest.raises(AuthError, match=r"invalid Status code \(503\)"):
            fetch_keys(IDP_URL)


def test_fetch_keys_jwks_status():
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, WELL_KNOWN_URL, json={"jwks_uri": JWKS_URL})
        mock.add(responses.GET, JWKS_URL, status=404)
        with pytest.raises(AuthError, match=r"invalid Status code \(404\)"):
            fetch_keys(IDP_URL)


def test_fetch_keys_without_jwks_uri():
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, WELL_KNOWN_URL, json={"issuer": IDP_URL})
        with pytest.raises(AuthError):
            fetch_keys(IDP_URL)


def test_find_key_matches_kid(jwk):
    keys = {"keys": [{"kid": "other"}, jwk]}
    assert find_key(keys, KEY_ID) is jwk


def test_find_key_without_kid_matches_key_without_kid():
    entry = {"kty": "RSA"}
    assert find_key({"keys": [{"kid": "other"}, entry]}, None) is entry


def test_find_key_missing():
    with pytest.raises(AuthError, match="Token key not found"):
        find_key({"keys": [{"kid": "other"}]}, KEY_ID)


def test_find_key_invalid_set():
    with pytest.raises(AuthError):
        find_key({"other": []}, KEY_ID)


def test_public_key_round_trip(jwk, signing_key):
    key = public_key_from_jwk(jwk)
    assert key.public_numbers() == signing_key.public_key().public_numbers()


def test_public_key_long_exponent_form(jwk):
    jwk["e"] = "AAEAAQ"
    assert public_key_from_jwk(jwk).public_numbers().e == 65537


@pytest.mark.parametrize(
    "changes, message",
    [
        ({"kty": "EC"}, r"invalid key type: \(EC\)"),
        ({"kty": None}, r"invalid key type: \(\)"),
        ({"n": "!!not base64!!"}, "Error base64 decoding key"),
        ({"e": "AQAC"}, "Key format error"),
        ({"n": ""}, "Key format error"),
    ],
)
def test_public_key_errors(jwk, changes, message):
    jwk.update(changes)
    with pytest.raises(AuthError, match=message):
        public_key_from_jwk(jwk)


def test_parse_token_returns_claims(idp, signing_key):
    claims = parse_token(_token(signing_key, {"roles": ["admin"]}), IDP_URL)
    assert claims["sub"] == "user-1"
    assert claims["roles"] == ["admin"]


def test_parse_token_ignores_audience(idp, signing_key):
    claims = parse_token(_token(signing_key, {"aud": "account"}), IDP_URL)
    assert claims["aud"] == "account"


def test_parse_token_foreign_signature(idp, foreign_key):
    with pytest.raises(AuthError, match="Error parsing token"):
        parse_token(_token(foreign_key), IDP_URL)


def test_parse_token_expired(idp, signing_key):
    expired = _token(signing_key, {"exp": int(time.time()) - 60})
    with pytest.raises(AuthError, match="Error parsing token"):
        parse_token(expired, IDP_URL)


def test_parse_token_unknown_kid(idp, signing_key):
    with pytest.raises(AuthError, match="Error parsing token"):
        parse_token(_token(signing_key, kid="unknown"), IDP_URL)


def test_parse_token_rejects_hmac(idp):
    forged = _token("secret", algorithm="HS256")
    with pytest.raises(AuthError):
        parse_token(forged, IDP_URL)


def test_parse_token_malformed_makes_no_requests(idp):
    with pytest.raises(AuthError):
        parse_token("not-a-jwt", IDP_URL)
    assert len(idp.calls) == 0


def test_get_token_returns_raw_and_claims(idp, signing_key):
    raw = _token(signing_key)
    token_string, claims = get_token({"Authorization": "Bearer " + raw}, IDP_URL)
    assert token_string == raw
    assert claims["sub"] == "user-1"


def test_get_token_header_name_is_case_insensitive(idp, signing_key):
    raw = _token(signing_key)
    token_string, _ = get_token({"authorization": raw}, IDP_URL)
    assert token_string == raw


def test_get_token_missing_header():
    with pytest.raises(AuthError, match="AUTHORIZATION header is missing."):
        get_token({"Content-Type": "application/json"}, IDP_URL)


def test_get_token_invalid(idp):
    with pytest.raises(AuthError, match="^Invalid token$"):
        get_token({"Authorization": "Bearer token"}, IDP_URL)


def test_verify_token_accepts_valid(idp, signing_key):
    assert verify_token({"Authorization": "Bearer " + _token(signing_key)}, IDP_URL) is None
    assert len(idp.calls) == 2


def test_verify_token_rejects_foreign(idp, foreign_key):
    with pytest.raises(AuthError, match="^Invalid token$"):
        verify_token({"Authorization": "Bearer " + _token(foreign_key)}, IDP_URL)


def test_verify_token_missing_header():
    with pytest.raises(AuthError, match="AUTHORIZATION header is missing."):
        verify_token({}, IDP_URL)


def test_get_unverified_token_keeps_claims(idp, foreign_key):
    raw = _token(foreign_key, {"context": "portal"})
    token_string, claims = get_unverified_token({"Authorization": "Bearer " + raw}, IDP_URL)
    assert token_string == raw
    assert claims["context"] == "portal"


def test_get_unverified_token_malformed(idp):
    token_string, claims = get_unverified_token({"Authorization": "Bearer token"}, IDP_URL)
    assert (token_string, claims) == ("token", {})