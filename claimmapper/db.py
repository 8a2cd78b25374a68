"""Storage of claims, roles and their mappings in a relational database."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from claimmapper.models import Claim, ContextClaim, Mapping, Role

_QUERY_FAILED = "Error while executing query"

_METADATA = sa.MetaData()
_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

_CLAIMS = sa.Table(
    "Claims",
    _METADATA,
    sa.Column("Id", _ID, primary_key=True, autoincrement=True),
    sa.Column("Claim", sa.Text),
    sa.Column("RowVer", sa.BigInteger, nullable=False),
)

_ROLES = sa.Table(
    "Roles",
    _METADATA,
    sa.Column("Id", _ID, primary_key=True, autoincrement=True),
    sa.Column("Role", sa.Text),
    sa.Column("RowVer", sa.BigInteger, nullable=False),
)

_MAPPING = sa.Table(
    "Mapping",
    _METADATA,
    sa.Column("Id", sa.Uuid, primary_key=True),
    sa.Column("Context", sa.String(50), nullable=False),
    sa.Column("Claim_Id", sa.BigInteger, sa.ForeignKey("Claims.Id")),
    sa.Column("Role_Id", sa.BigInteger, sa.ForeignKey("Roles.Id")),
    sa.Column("Name", sa.String(120), nullable=False),
    sa.Column("Description", sa.String(120), nullable=False),
    sa.Column("RowVer", sa.BigInteger, nullable=False),
)


class DatabaseError(Exception):
    """Raised when the database cannot be reached or a statement fails."""


class Store:
    """Reads and writes claims, roles and mappings."""

    def __init__(self, url: str) -> None:
        self._url = url
        self._engine: Engine | None = None

    def _get_engine(self) -> Engine:
        if self._engine is None:
            self._engine = sa.create_engine(self._url)
        return self._engine

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            conn = self._get_engine().connect()
        except (SQLAlchemyError, ImportError) as exc:
            raise DatabaseError(f"Unable to connect to database: {exc}") from exc
        with conn:
            try:
                with conn.begin():
                    yield conn
            except SQLAlchemyError as exc:
                raise DatabaseError(_QUERY_FAILED) from exc

    def migrate(self) -> None:
        """Create the tables that do not exist yet."""
        with self._connect() as conn:
            _METADATA.create_all(conn)

    # Claims

    def list_claims(self) -> list[Claim]:
        query = sa.select(_CLAIMS.c.Id, _CLAIMS.c.Claim, _CLAIMS.c.RowVer).order_by(_CLAIMS.c.Id)
        with self._connect() as conn:
            rows = conn.execute(query).all()
        return [Claim(id=id_, claim=name or "", row_ver=row_ver) for id_, name, row_ver in rows]

    def insert_claims(self, names: Iterable[str]) -> None:
        """Add claims with the given names at row version 1."""
        names = list(names)
        with self._connect() as conn:
            if not names:
                raise DatabaseError(_QUERY_FAILED)
            conn.execute(sa.insert(_CLAIMS), [{"Claim": name, "RowVer": 1} for name in names])

    def update_claim(self, claim: Claim) -> None:
        """Rename a claim if its row version still matches, bumping the version."""
        statement = (
            sa.update(_CLAIMS)
            .where(_CLAIMS.c.Id == claim.id, _CLAIMS.c.RowVer == claim.row_ver)
            .values(Claim=claim.claim, RowVer=claim.row_ver + 1)
        )
        with self._connect() as conn:
            conn.execute(statement)

    def delete_claim(self, claim_id: int) -> None:
        with self._connect() as conn:
            conn.execute(sa.delete(_CLAIMS).where(_CLAIMS.c.Id == claim_id))

    # Roles

    @staticmethod
    def _roles(rows: Iterable[tuple[int, str | None, int]]) -> list[Role]:
        return [Role(id=id_, role=name or "", row_ver=row_ver) for id_, name, row_ver in rows]

    def list_roles(self) -> list[Role]:
        query = sa.select(_ROLES.c.Id, _ROLES.c.Role, _ROLES.c.RowVer).order_by(_ROLES.c.Id)
        with self._connect() as conn:
            rows = conn.execute(query).all()
        return self._roles(rows)

    def list_context_roles(self, context_id: str) -> list[Role]:
        """Roles that have at least one mapping in the context."""
        mapped = (
            sa.select(_MAPPING.c.Role_Id)
            .where(_MAPPING.c.Context == context_id)
            .correlate(None)
        )
        query = (
            sa.select(_ROLES.c.Id, _ROLES.c.Role, _ROLES.c.RowVer)
            .where(_ROLES.c.Id.in_(mapped))
            .order_by(_ROLES.c.Id)
        )
        with self._connect() as conn:
            rows = conn.execute(query).all()
        return self._roles(rows)

    def insert_roles(self, names: Iterable[str]) -> None:
        """Add roles with the given names at row version 1."""
        names = list(names)
        with self._connect() as conn:
            if not names:
                raise DatabaseError(_QUERY_FAILED)
            conn.execute(sa.insert(_ROLES), [{"Role": name, "RowVer": 1} for name in names])

    def update_role(self, role: Role) -> None:
        """Rename a role if its row version still matches, bumping the version."""
        statement = (
            sa.update(_ROLES)
            .where(_ROLES.c.Id == role.id, _ROLES.c.RowVer == role.row_ver)
            .values(Role=role.role, RowVer=role.row_ver + 1)
        )
        with self._connect() as conn:
            conn.execute(statement)

    def delete_role(self, role_id: int) -> None:
        with self._connect() as conn:
            conn.execute(sa.delete(_ROLES).where(_ROLES.c.Id == role_id))

    # Claims granted to roles

    @staticmethod
    def _role_ids(roles: list[str]) -> sa.Select:
        return sa.select(_ROLES.c.Id).where(_ROLES.c.Role.in_(roles)).correlate(None)

    @staticmethod
    def _context_claims_query() -> sa.Select:
        return sa.select(
            _CLAIMS.c.Id, _CLAIMS.c.Claim, _CLAIMS.c.RowVer, _MAPPING.c.Context
        ).select_from(_CLAIMS.join(_MAPPING, _CLAIMS.c.Id == _MAPPING.c.Claim_Id))

    def _context_claims(self, roles: list[str], build) -> list[ContextClaim]:
        with self._connect() as conn:
            if not roles:
                raise DatabaseError(_QUERY_FAILED)
            rows = conn.execute(build()).all()
        return [
            ContextClaim(id=id_, claim=name or "", row_ver=row_ver, context=context)
            for id_, name, row_ver, context in rows
        ]

    def list_roles_claims(self, roles: Iterable[str]) -> list[ContextClaim]:
        """Claims mapped to any of the named roles, one entry per mapping."""
        roles = list(roles)

        def build() -> sa.Select:
            mapping_ids = (
                sa.select(_MAPPING.c.Id)
                .where(_MAPPING.c.Role_Id.in_(self._role_ids(roles)))
                .correlate(None)
            )
            return self._context_claims_query().where(_MAPPING.c.Id.in_(mapping_ids))

        return self._context_claims(roles, build)

    def list_context_roles_claims(
        self, context_id: str, roles: Iterable[str]
    ) -> list[ContextClaim]:
        """Claims mapped to any of the named roles within one context."""
        roles = list(roles)

        def build() -> sa.Select:
            claim_ids = (
                sa.select(_MAPPING.c.Claim_Id)
                .where(_MAPPING.c.Context == context_id)
                .correlate(None)
            )
            mapping_ids = (
                sa.select(_MAPPING.c.Id)
                .where(
                    _MAPPING.c.Role_Id.in_(self._role_ids(roles)),
                    _MAPPING.c.Context == context_id,
                )
                .correlate(None)
            )
            return self._context_claims_query().where(
                _CLAIMS.c.Id.in_(claim_ids), _MAPPING.c.Id.in_(mapping_ids)
            )

        return self._context_claims(roles, build)

    # Mappings

    def list_mappings(self) -> list[Mapping]:
        query = sa.select(
            _MAPPING.c.Id,
            _MAPPING.c.Context,
            _MAPPING.c.Claim_Id,
            _MAPPING.c.Role_Id,
            _MAPPING.c.Name,
            _MAPPING.c.Description,
            _MAPPING.c.RowVer,
        )
        with self._connect() as conn:
            rows = conn.execute(query).all()
        return [
            Mapping(
                id=mapping_id,
                context=context,
                claim_id=claim_id,
                role_id=role_id,
                name=name,
                description=description,
                row_ver=row_ver,
            )
            for mapping_id, context, claim_id, role_id, name, description, row_ver in rows
        ]

    def insert_mappings(self, mappings: Iterable[Mapping]) -> None:
        """Add mappings under their own ids at row version 1."""
        rows = [
            {
                "Id": mapping.id,
                "Context": mapping.context,
                "Claim_Id": mapping.claim_id,
                "Role_Id": mapping.role_id,
                "Name": mapping.name,
                "Description": mapping.description,
                "RowVer": 1,
            }
            for mapping in mappings
        ]
        with self._connect() as conn:
            if not rows:
                raise DatabaseError(_QUERY_FAILED)
            conn.execute(sa.insert(_MAPPING), rows)

    def update_mapping(self, mapping: Mapping) -> None:
        """Replace a mapping's fields if its row version still matches."""
        statement = (
            sa.update(_MAPPING)
            .where(_MAPPING.c.Id == mapping.id, _MAPPING.c.RowVer == mapping.row_ver)
            .values(
                Name=mapping.name,
                Description=mapping.description,
                Context=mapping.context,
                Claim_Id=mapping.claim_id,
                Role_Id=mapping.role_id,
                RowVer=mapping.row_ver + 1,
            )
        )
        with self._connect() as conn:
            conn.execute(statement)

    def delete_mapping(self, mapping_id: uuid.UUID) -> None:
        with self._connect() as conn:
            conn.execute(sa.delete(_MAPPING).where(_MAPPING.c.Id == mapping_id))