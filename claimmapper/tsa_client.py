"""Client of the policy service that filters a context's claims."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

import requests

_MAX_BODY = 1 << 20


class TsaError(Exception):
    """Raised when the policy service cannot be asked or answers badly."""


def get_context_claims(
    policy_url: str,
    context: str,
    claims: Iterable[str] | None,
    token: str,
) -> dict[str, Any]:
    """Ask the policy service which of the claims apply in the context.

    A list response is returned as {"claims": [...]}, an object as it is.
    """
    body = {
        "claims": None if claims is None else list(claims),
        "context": context,
        "requestor": token,
    }
    payload = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    try:
        response = requests.post(
            policy_url, data=payload, headers={"Content-type": "application/json"}
        )
    except requests.RequestException as exc:
        raise TsaError(str(exc)) from exc

    if not 200 <= response.status_code <= 300:
        raise TsaError(f"invalid Status code ({response.status_code})")

    try:
        result = json.loads(response.content[:_MAX_BODY])
    except ValueError as exc:
        raise TsaError("invalid response body") from exc

    if isinstance(result, list):
        return {"claims": result}
    if isinstance(result, dict):
        return result
    raise TsaError("invalid response body")