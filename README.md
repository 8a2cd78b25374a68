# claimmapper

A small HTTP service that turns the roles carried in an OpenID Connect
access token into the claims a user holds in a given context.

Roles, claims and the mappings between them are kept in a SQL database.
When a token is presented, its signature is checked against the keys the
identity provider publishes, its roles are read, the matching claims are
collected for the requested context (or the context named in the token),
optionally filtered through a per-context policy endpoint, and extended
with configured default claims.

## Installation

```
pip install .
```

The database is reached through SQLAlchemy with a `postgresql://` URL.
No PostgreSQL driver is installed with the package; install one that
SQLAlchemy's default PostgreSQL dialect uses (for example `psycopg2`)
alongside it. Without a driver every database call fails and is reported
as a server error.

## Configuration

The service is configured entirely through environment variables. All of
the following must be set (`claimmapper.config.load_config`):

| Variable                    | Meaning |
|-----------------------------|---------|
| `PORT`                      | Port to listen on (an integer) |
| `IDENTITY_PROVIDER_OID_URL` | Base URL of the OpenID provider; its `/.well-known/openid-configuration` is read to find the key set |
| `TOKEN_ROLES_PATH`          | JSONPath to the list of roles inside the token, e.g. `$.realm_access.roles` |
| `TOKEN_CONTEXT_PATH`        | JSONPath to the context string inside the token |
| `DEFAULT_CLAIMS`            | JSON list of `{"roles": [...], "context": "...", "claims": [...]}`; a context of `*` applies everywhere |
| `PG_HOST`, `PG_PORT`, `PG_USER`, `PG_PASSWORD`, `PG_DB` | Database connection settings |

Keys in `DEFAULT_CLAIMS` entries are matched without regard to case.

Policy endpoints may be given per context as `TSA_URL_<context>`, with
`TSA_URL_default` as the fallback (`claimmapper.config.context_policy_url`).
When one applies, the context's claims are posted to it as
`{"claims": [...], "context": "...", "requestor": "<raw token>"}`; it may
answer with a list of claim names or with an object holding `"claims"`,
and only the claims it names are kept. A status outside 200–300 makes the
request fail with status 500.

Example:

```
export PORT=8080
export IDENTITY_PROVIDER_OID_URL=https://idp.example.com/realms/demo
export TOKEN_ROLES_PATH='$.realm_access.roles'
export TOKEN_CONTEXT_PATH='$.context'
export DEFAULT_CLAIMS='[{"roles": ["user"], "context": "*", "claims": ["read"]}]'
export PG_HOST=localhost PG_PORT=5432 PG_USER=user PG_PASSWORD=password PG_DB=claims
```

## Running

```
claimmapper
```

The command reads the configuration, creates the tables `Claims`, `Roles`
and `Mapping` if they do not exist, and starts Flask's built-in server on
`0.0.0.0:PORT`. A missing or invalid configuration is logged and the
command exits with status 0; a database that cannot be set up is logged
and the command exits with status 1.

Logs are JSON lines on standard error. Every request except `/isAlive` is
logged with its method, URI and duration.

## Endpoints

| Method | Path             | Token needed | Purpose |
|--------|------------------|--------------|---------|
| GET    | `/claims`        | yes | Claims for the bearer token; `?context=` selects a context |
| GET    | `/list/roles`    | no  | List roles |
| POST   | `/list/roles`    | yes | Add roles: `[{"Role": "admin"}]` |
| PUT    | `/list/roles`    | yes | Rename a role: `?id=1` with `{"role": "...", "rowversion": 1}` |
| DELETE | `/list/roles`    | yes | Delete a role: `?id=1` |
| GET    | `/list/claims`   | no  | List claims |
| POST   | `/list/claims`   | yes | Add claims: `[{"Claim": "read"}]` |
| PUT    | `/list/claims`   | yes | Rename a claim: `?id=1` with `{"claim": "...", "rowversion": 1}` |
| DELETE | `/list/claims`   | yes | Delete a claim: `?id=1` |
| GET    | `/list/mappings` | no  | List mappings |
| POST   | `/list/mappings` | yes | Add mappings: `[{"Id": "<uuid>", "Context": "...", "Claim_Id": 1, "Role_Id": 1, "Name": "...", "Description": "..."}]` |
| PUT    | `/list/mappings` | yes | Update a mapping: `?id=<uuid>` with `name`, `desc`, `context`, `claim_id`, `role_id`, `rowversion` |
| DELETE | `/list/mappings` | yes | Delete a mapping: `?id=<uuid>` |
| GET    | `/isAlive`       | no  | Health check |

The token is sent as `Authorization: Bearer token`. Responses:

- `401` with the error message as a JSON string when the token is missing
  or does not verify.
- `409` with `{"error": {"message": "..."}}` when `id` is missing or
  malformed, or when the token lacks the roles or context needed by
  `/claims`.
- `400` with a plain-text message when a body cannot be decoded, a field
  is missing or of the wrong type, or a mapping names an unknown
  `claim_id` or `role_id`.
- `500` with an empty body when the database or the policy endpoint fails;
  posting an empty list also fails this way.
- `201` after a successful POST, `200` otherwise.

`GET /claims` answers with a list of
`{"context": "...", "claims": [{"Id": 1, "Claim": "...", "RowVer": 1, "Context": "..."}]}`.
Default claims added from `DEFAULT_CLAIMS` carry `Id` and `RowVer` 0.

Updates use the row version for optimistic locking: an update only
applies when the given `rowversion` matches the stored one, and it then
increments the stored version. New records start at row version 1.

## Using it as a library

```python
from claimmapper.config import load_config
from claimmapper.db import Store
from claimmapper.server import create_app

config = load_config()
store = Store(config.database_url())
store.migrate()
app = create_app(config, store)
```

Other pieces can be used on their own:

- `claimmapper.db.Store` — list, insert, update and delete claims, roles
  and mappings; any SQLAlchemy URL works, e.g. `sqlite://` for tests.
- `claimmapper.auth` — `get_token`, `verify_token` and
  `get_unverified_token` check a request's headers; `parse_token`,
  `fetch_keys`, `find_key` and `public_key_from_jwk` do the individual steps.
- `claimmapper.claims.resolve_claims` — the `/claims` response for
  decoded token data.
- `claimmapper.jsonpath.read` — a small JSONPath reader supporting `$`,
  `.name`, `['name']`, name unions, indexes, index unions, slices,
  wildcards and recursive descent `..name`.
- `claimmapper.tsa_client.get_context_claims` — the policy endpoint call.

## Tests

```
pip install .[test]
pytest
```