"""Role checks and merging of configured default claims."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from claimmapper.config import ClaimConfig
from claimmapper.models import ContextClaim


def has_role(roles: Iterable[str], existing_roles: Iterable[str]) -> bool:
    """True when any of the roles is among the existing roles."""
    return not set(roles).isdisjoint(existing_roles)


def append_default_claims(
    current_context: str,
    default_claims: Iterable[ClaimConfig],
    existing_claims: dict[str, Any],
    roles: Iterable[str],
) -> None:
    """Add configured default claims to a context's claims, in place.

    A default applies when its context is the current one or "*" and the
    roles include one of its roles. Claims already present are not repeated.
    """
    roles = list(roles)
    claims = existing_claims.get("claims")
    claims = [] if claims is None else list(claims)
    for claim_config in default_claims:
        if claim_config.context not in (current_context, "*"):
            continue
        if not has_role(roles, claim_config.roles):
            continue
        for default_claim in claim_config.claims:
            if any(claim.claim == default_claim for claim in claims):
                continue
            claims.append(
                ContextClaim(
                    id=0,
                    claim=default_claim,
                    row_ver=0,
                    context=existing_claims["context"],
                )
            )
    existing_claims["claims"] = claims