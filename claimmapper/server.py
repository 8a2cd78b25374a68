"""HTTP API serving claims, roles and their mappings."""

from __future__ import annotations

import json
import logging
import re
import sys
import time
import uuid
from collections.abc import Callable
from typing import Any

from flask import Flask, Response, g, request

from claimmapper.auth import AuthError, get_token, verify_token
from claimmapper.claims import ClaimsRequestError, resolve_claims
from claimmapper.config import LOGGER_NAME, Config, ConfigError, initialize_logger, load_config
from claimmapper.db import DatabaseError, Store
from claimmapper.models import Claim, Mapping, Role
from claimmapper.tsa_client import TsaError

_log = logging.getLogger(LOGGER_NAME)

_INVALID_ID = "Invalid parameter id."
_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_HTML_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)
_JSON = "application/json"


class _BadRequest(Exception):
    """The request body or its parameters cannot be used."""


def _encode(data: Any) -> str:
    text = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _HTML_ESCAPES:
        text = text.replace(char, escape)
    return text + "\n"


def _json(data: Any, status: int = 200) -> Response:
    return Response(_encode(data), status=status, content_type=_JSON)


def _empty(status: int = 200) -> Response:
    return Response(b"", status=status, content_type=_JSON)


def _conflict(message: str) -> Response:
    return _json({"error": {"message": message}}, 409)


def _bad_request(message: str) -> Response:
    return Response(
        message + "\n",
        status=400,
        content_type="text/plain; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff"},
    )


def _server_error(exc: Exception) -> Response:
    _log.error("%s", exc)
    return _empty(500)


def _decode_body() -> Any:
    """The first JSON value of the request body."""
    text = request.get_data().decode("utf-8", errors="replace").lstrip()
    if not text:
        raise _BadRequest("EOF")
    try:
        value, _ = json.JSONDecoder().raw_decode(text)
    except ValueError as exc:
        raise _BadRequest(str(exc)) from exc
    return value


def _decode_list(build: Callable[[Any], Any], empty: Callable[[], Any]) -> list[Any]:
    data = _decode_body()
    if data is None:
        return []
    if not isinstance(data, list):
        raise _BadRequest("expected a JSON array")
    try:
        return [empty() if item is None else build(item) for item in data]
    except ValueError as exc:
        raise _BadRequest(str(exc)) from exc


def _decode_object() -> dict[str, Any]:
    data = _decode_body()
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise _BadRequest("expected a JSON object")
    return data


def _string_param(payload: dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str):
        raise _BadRequest(f'Missing or invalid parameter "{name}"')
    return value


def _number_param(payload: dict[str, Any], name: str) -> int:
    value = payload.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _BadRequest(f'Missing or invalid parameter "{name}"')
    return int(value)


def _int_id() -> int | None:
    text = request.args.get("id", "")
    if not _INTEGER.fullmatch(text):
        return None
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        return None
    return number


def _uuid_id() -> uuid.UUID | None:
    text = request.args.get("id", "")
    if not text:
        return None
    try:
        return uuid.UUID(text)
    except ValueError:
        return None


def _request_uri() -> str:
    query = request.query_string.decode("latin-1")
    return request.path + ("?" + query if query else "")


def create_app(config: Config, store: Store) -> Flask:
    """Build the web application serving the API."""
    app = Flask(__name__)
    provider = config.identity_provider_oid_url

    def unauthorized() -> Response | None:
        try:
            verify_token(request.headers, provider)
        except AuthError as exc:
            _log.error("%s", exc)
            return _json(str(exc), 401)
        return None

    @app.before_request
    def _start_timer() -> None:
        g.started = time.monotonic()

    @app.after_request
    def _log_request(response: Response) -> Response:
        if request.path != "/isAlive":
            elapsed = time.monotonic() - g.get("started", time.monotonic())
            _log.info(
                "",
                extra={
                    "fields": {
                        "method": request.method,
                        "uri": _request_uri(),
                        "duration": elapsed * 1000,
                    }
                },
            )
        return response

    @app.route("/claims", methods=["GET"])
    def claims_get() -> Response:
        context = request.args.get("context", "")
        try:
            raw, token_data = get_token(request.headers, provider)
        except AuthError as exc:
            _log.error("%s", exc)
            return _json(str(exc), 401)
        try:
            body = resolve_claims(config, store, token_data, raw, context or None)
        except ClaimsRequestError as exc:
            return _conflict(str(exc))
        except (DatabaseError, TsaError) as exc:
            return _server_error(exc)
        return _json(body or None)

    # Roles

    @app.route("/list/roles", methods=["GET"])
    def list_roles_get() -> Response:
        try:
            roles = store.list_roles()
        except DatabaseError as exc:
            return _server_error(exc)
        return _json([role.to_json() for role in roles])

    @app.route("/list/roles", methods=["POST"])
    def list_roles_post() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        try:
            new_roles = _decode_list(Role.from_json, Role)
        except _BadRequest as exc:
            return _bad_request(str(exc))
        try:
            store.insert_roles(role.role for role in new_roles)
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty(201)

    @app.route("/list/roles", methods=["PUT"])
    def list_roles_put() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        role_id = _int_id()
        if role_id is None:
            return _conflict(_INVALID_ID)
        try:
            payload = _decode_object()
            name = _string_param(payload, "role")
            row_ver = _number_param(payload, "rowversion")
        except _BadRequest as exc:
            return _bad_request(str(exc))
        try:
            store.update_role(Role(id=role_id, role=name, row_ver=row_ver))
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty()

    @app.route("/list/roles", methods=["DELETE"])
    def list_roles_delete() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        role_id = _int_id()
        if role_id is None:
            return _conflict(_INVALID_ID)
        try:
            store.delete_role(role_id)
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty()

    # Claims

    @app.route("/list/claims", methods=["GET"])
    def list_claims_get() -> Response:
        try:
            claims = store.list_claims()
        except DatabaseError as exc:
            return _server_error(exc)
        return _json([claim.to_json() for claim in claims])

    @app.route("/list/claims", methods=["POST"])
    def list_claims_post() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        try:
            new_claims = _decode_list(Claim.from_json, Claim)
        except _BadRequest as exc:
            return _bad_request(str(exc))
        try:
            store.insert_claims(claim.claim for claim in new_claims)
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty(201)

    @app.route("/list/claims", methods=["PUT"])
    def list_claims_put() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        claim_id = _int_id()
        if claim_id is None:
            return _conflict(_INVALID_ID)
        try:
            payload = _decode_object()
            name = _string_param(payload, "claim")
            row_ver = _number_param(payload, "rowversion")
        except _BadRequest as exc:
            return _bad_request(str(exc))
        try:
            store.update_claim(Claim(id=claim_id, claim=name, row_ver=row_ver))
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty()

    @app.route("/list/claims", methods=["DELETE"])
    def list_claims_delete() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        claim_id = _int_id()
        if claim_id is None:
            return _conflict(_INVALID_ID)
        try:
            store.delete_claim(claim_id)
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty()

    # Mappings

    def known_ids() -> tuple[set[int], set[int]]:
        return {c.id for c in store.list_claims()}, {r.id for r in store.list_roles()}

    @app.route("/list/mappings", methods=["GET"])
    def list_mappings_get() -> Response:
        try:
            mappings = store.list_mappings()
        except DatabaseError as exc:
            return _server_error(exc)
        return _json([mapping.to_json() for mapping in mappings])

    @app.route("/list/mappings", methods=["POST"])
    def list_mappings_post() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        try:
            new_mappings = _decode_list(Mapping.from_json, Mapping)
        except _BadRequest as exc:
            return _bad_request(str(exc))
        try:
            claim_ids = {claim.id for claim in store.list_claims()}
            if any(m.claim_id not in claim_ids for m in new_mappings):
                return _bad_request('Invalid parameter "claim_id"')
            role_ids = {role.id for role in store.list_roles()}
            if any(m.role_id not in role_ids for m in new_mappings):
                return _bad_request('Invalid parameter "role_id"')
            store.insert_mappings(new_mappings)
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty(201)

    @app.route("/list/mappings", methods=["PUT"])
    def list_mappings_put() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        mapping_id = _uuid_id()
        if mapping_id is None:
            return _conflict(_INVALID_ID)
        try:
            payload = _decode_object()
            updated = Mapping(
                id=mapping_id,
                name=_string_param(payload, "name"),
                description=_string_param(payload, "desc"),
                context=_string_param(payload, "context"),
                claim_id=_number_param(payload, "claim_id"),
                role_id=_number_param(payload, "role_id"),
                row_ver=_number_param(payload, "rowversion"),
            )
        except _BadRequest as exc:
            return _bad_request(str(exc))
        try:
            if updated.claim_id not in {claim.id for claim in store.list_claims()}:
                return _bad_request('Invalid parameter "claim_id"')
            if updated.role_id not in {role.id for role in store.list_roles()}:
                return _bad_request('Invalid parameter "role_id"')
            store.update_mapping(updated)
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty()

    @app.route("/list/mappings", methods=["DELETE"])
    def list_mappings_delete() -> Response:
        if (denied := unauthorized()) is not None:
            return denied
        mapping_id = _uuid_id()
        if mapping_id is None:
            return _conflict(_INVALID_ID)
        try:
            store.delete_mapping(mapping_id)
        except DatabaseError as exc:
            return _server_error(exc)
        return _empty()

    @app.route("/isAlive", methods=["GET"])
    def is_alive_get() -> Response:
        return Response(b"", status=200)

    return app


def main(argv: list[str] | None = None) -> int:
    """Start the service from the environment's configuration.

    Command-line arguments are not used. A missing or invalid configuration
    is logged and ends the program with status 0.
    """
    logger = initialize_logger()
    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("%s", exc)
        return 0

    store = Store(config.database_url())
    try:
        store.migrate()
    except DatabaseError as exc:
        logger.error("%s", exc)
        return 1

    create_app(config, store).run(host="0.0.0.0", port=config.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())