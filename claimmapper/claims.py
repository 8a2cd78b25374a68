"""Working out which claims a token's roles grant, per context."""

from __future__ import annotations

from typing import Any

from claimmapper.config import Config, context_policy_url
from claimmapper.helper import append_default_claims, has_role
from claimmapper.jsonpath import JsonPathError
from claimmapper.jsonpath import read as read_path
from claimmapper.models import ContextClaim
from claimmapper.tsa_client import TsaError, get_context_claims

_MISSING_ROLES = "Invalid or missing roles."
_MISSING_CONTEXT = "Invalid or missing context in token."


class ClaimsRequestError(Exception):
    """Raised when the token does not carry the roles or context needed."""


def _lookup(data: Any, path: str) -> Any:
    try:
        return read_path(data, path)
    except JsonPathError:
        return None


def token_roles(token_data: Any, roles_path: str) -> list[str]:
    """The role names found in the token's claims at the configured path."""
    roles = _lookup(token_data, roles_path)
    if not isinstance(roles, list) or not all(isinstance(role, str) for role in roles):
        raise ClaimsRequestError(_MISSING_ROLES)
    return list(roles)


def _allowed_claims(
    policy_url: str, context: str, names: list[str] | None, raw_token: str
) -> list[str]:
    result = get_context_claims(policy_url, context, names, raw_token)
    allowed = result.get("claims")
    if allowed is None:
        return []
    if not isinstance(allowed, list):
        raise TsaError("invalid response body")
    return [name for name in allowed if isinstance(name, str)]


def _with_default_claims(
    config: Config, token_context: str, body: list[dict[str, Any]], roles: list[str]
) -> list[dict[str, Any]]:
    applicable = [
        claim_config
        for claim_config in config.default_claims
        if claim_config.context in (token_context, "*") and has_role(roles, claim_config.roles)
    ]
    result = []
    for entry in body:
        current_entry = entry
        # Each applicable default set starts again from the entry's own claims;
        # the last set that adds anything decides the entry.
        for claim_config in applicable:
            current = list(entry["claims"])
            added = False
            for default_claim in claim_config.claims:
                if any(claim.claim == default_claim for claim in current):
                    continue
                current.append(ContextClaim(id=0, claim=default_claim, row_ver=0, context=token_context))
                added = True
            if added:
                current_entry = {"context": token_context, "claims": current}
        result.append(current_entry)
    return result


def claims_for_token_context(
    config: Config,
    store: Any,
    token_data: Any,
    raw_token: str,
    roles: list[str],
) -> list[dict[str, Any]]:
    """Claims of the roles in the context named by the token, one entry per claim.

    Entries are {"context": str, "claims": [ContextClaim, ...]}.
    """
    token_context = _lookup(token_data, config.token_context_path)
    if not isinstance(token_context, str):
        raise ClaimsRequestError(_MISSING_CONTEXT)

    claims = store.list_context_roles_claims(token_context, roles)
    body: list[dict[str, Any]]
    if not claims:
        body = [{"context": token_context, "claims": []}]
    else:
        body = []
        for claim in claims:
            policy_url = context_policy_url(claim.context)
            if policy_url and claim.claim not in _allowed_claims(
                policy_url, claim.context, [claim.claim], raw_token
            ):
                continue
            body.append({"context": claim.context, "claims": [claim]})

    return _with_default_claims(config, token_context, body, roles)


def claims_for_context(
    config: Config,
    store: Any,
    context: str,
    raw_token: str,
    roles: list[str],
) -> list[dict[str, Any]]:
    """Claims of the roles in the given context, as a single entry.

    Entries are {"context": str, "claims": [ContextClaim, ...]}.
    """
    claims = store.list_context_roles_claims(context, roles)
    policy_url = context_policy_url(context)
    if policy_url:
        names = [claim.claim for claim in claims] or None
        allowed = _allowed_claims(policy_url, context, names, raw_token)
        claims = [claim for claim in claims for name in allowed if claim.claim == name]
    entry: dict[str, Any] = {"context": context, "claims": claims}
    append_default_claims(context, config.default_claims, entry, roles)
    return [entry]


def resolve_claims(
    config: Config,
    store: Any,
    token_data: Any,
    raw_token: str,
    context: str | None,
) -> list[dict[str, Any]]:
    """JSON-ready claims response for a token, optionally for one context."""
    roles = token_roles(token_data, config.token_roles_path)
    if context:
        body = claims_for_context(config, store, context, raw_token, roles)
    else:
        body = claims_for_token_context(config, store, token_data, raw_token, roles)
    return [
        {"context": entry["context"], "claims": [claim.to_json() for claim in entry["claims"]]}
        for entry in body
    ]