"""Bearer token checks against the keys published by the identity provider."""

from __future__ import annotations

import base64
import json
import logging
import re
from collections.abc import Mapping
from typing import Any

import jwt
import requests
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey, RSAPublicNumbers

from claimmapper.config import LOGGER_NAME

_log = logging.getLogger(LOGGER_NAME)

_MAX_BODY = 1 << 20
_RSA_ALGORITHMS = ["RS256", "RS384", "RS512", "PS256", "PS384", "PS512"]
_EXPONENTS = frozenset({"AQAB", "AAEAAQ"})
_RSA_EXPONENT = 65537
_RAW_URL_BASE64 = re.compile(r"[A-Za-z0-9_-]*")


class AuthError(Exception):
    """Raised when a request's token is missing or does not verify."""


def extract_token_string(authorization: str) -> str:
    """The token of an Authorization value: the second of exactly two fields, else all of it."""
    fields = authorization.split()
    if len(fields) == 2:
        return fields[1]
    return authorization


def _get_json(url: str) -> Any:
    try:
        response = requests.get(url)
    except requests.RequestException as exc:
        raise AuthError(str(exc)) from exc
    if response.status_code != 200:
        raise AuthError(f"invalid Status code ({response.status_code})")
    try:
        return json.loads(response.content[:_MAX_BODY])
    except ValueError:
        return None


def fetch_keys(identity_provider_url: str) -> dict[str, Any]:
    """Fetch the provider's key set through its OpenID discovery document."""
    discovery = _get_json(identity_provider_url + "/.well-known/openid-configuration")
    if not isinstance(discovery, dict) or not isinstance(discovery.get("jwks_uri"), str):
        raise AuthError("invalid OpenID configuration")
    keys = _get_json(discovery["jwks_uri"])
    if not isinstance(keys, dict):
        raise AuthError("invalid key set")
    return keys


def find_key(keys: Mapping[str, Any], kid: Any) -> dict[str, Any]:
    """The entry of a key set whose "kid" equals the given one."""
    entries = keys.get("keys")
    if not isinstance(entries, list):
        raise AuthError("invalid key set")
    for entry in entries:
        if not isinstance(entry, dict):
            raise AuthError("invalid key set")
        if entry.get("kid") == kid:
            return entry
    raise AuthError("Token key not found")


def _text(jwk: Mapping[str, Any], name: str) -> str:
    value = jwk.get(name)
    return value if isinstance(value, str) else ""


def public_key_from_jwk(jwk: Mapping[str, Any]) -> RSAPublicKey:
    """Build the RSA public key described by a JSON web key."""
    kty = _text(jwk, "kty")
    if kty != "RSA":
        raise AuthError(f"invalid key type: ({kty})")

    modulus = _text(jwk, "n")
    if not _RAW_URL_BASE64.fullmatch(modulus) or len(modulus) % 4 == 1:
        raise AuthError("Error base64 decoding key")
    modulus_bytes = base64.urlsafe_b64decode(modulus + "=" * (-len(modulus) % 4))

    if _text(jwk, "e") not in _EXPONENTS:
        raise AuthError("Key format error")

    try:
        return RSAPublicNumbers(_RSA_EXPONENT, int.from_bytes(modulus_bytes, "big")).public_key()
    except ValueError as exc:
        raise AuthError("Key format error") from exc


def parse_token(token_string: str, identity_provider_url: str) -> dict[str, Any]:
    """Verify a token's signature and time claims; return its claims."""
    try:
        header = jwt.get_unverified_header(token_string)
        jwk = find_key(fetch_keys(identity_provider_url), header.get("kid"))
        key = public_key_from_jwk(jwk)
        return jwt.decode(
            token_string,
            key,
            algorithms=_RSA_ALGORITHMS,
            options={"verify_aud": False},
        )
    except (AuthError, jwt.PyJWTError) as exc:
        _log.error("ERROR:%s", exc)
        raise AuthError("Error parsing token") from exc


def _authorization(headers: Mapping[str, str]) -> str | None:
    for key, value in headers.items():
        if key.lower() == "authorization":
            return value
    return None


def _token_string(headers: Mapping[str, str]) -> str:
    authorization = _authorization(headers)
    if authorization is None:
        error = AuthError("AUTHORIZATION header is missing.")
        _log.error("%s", error)
        raise error
    return extract_token_string(authorization)


def get_token(headers: Mapping[str, str], identity_provider_url: str) -> tuple[str, dict[str, Any]]:
    """The raw bearer token of a request and its verified claims."""
    raw = _token_string(headers)
    try:
        claims = parse_token(raw, identity_provider_url)
    except AuthError as exc:
        _log.error("Invalid token. %s", exc)
        raise AuthError("Invalid token") from exc
    return raw, claims


def get_unverified_token(
    headers: Mapping[str, str], identity_provider_url: str
) -> tuple[str, dict[str, Any]]:
    """The raw bearer token and its claims, whether or not it verifies."""
    raw = _token_string(headers)
    try:
        return raw, parse_token(raw, identity_provider_url)
    except AuthError:
        pass
    try:
        claims = jwt.decode(raw, options={"verify_signature": False})
    except jwt.PyJWTError:
        claims = {}
    return raw, claims


def verify_token(headers: Mapping[str, str], identity_provider_url: str) -> None:
    """Raise AuthError unless the request carries a valid token."""
    get_token(headers, identity_provider_url)