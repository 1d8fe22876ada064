"""
estatecrm/tenant.py

Tenant-Scoped Data Accessor (defense in depth).

All tenant-owned reads and writes go through TenantScopedAccessor. The accessor
is bound to one organization and injects `organization_id == <bound org>` into
every query it builds; handler code never gets an unscoped entry point.

- Rows owned by another organization are reported as "not found"
- organization_id is stamped on create and immutable afterwards
- Returned rows are re-checked; in DEV a mismatch is logged, in STAGING/PROD it fails fast
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from estatecrm.config import IS_DEV, IS_POSTGRES
from estatecrm.errors import InternalError, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

M = TypeVar("M")


def require_organization_id(organization_id: Optional[str]) -> str:
    """
    Guardrail: a tenant-scoped operation needs an organization.

    Raises:
        InternalError: organization id missing (server bug, never a client error)
    """
    if not organization_id:
        logger.error("[TENANT] Missing organization_id for tenant-scoped access")
        raise InternalError("Tenant scope missing")
    return organization_id


def assert_rows_scoped(rows: Iterable[Any], organization_id: str, label: str = "") -> None:
    """
    Guardrail: every returned row must belong to the bound organization.

    - In DEV: logs mismatches
    - In STAGING/PROD: fails fast with InternalError
    """
    mismatches = [
        getattr(row, "id", None)
        for row in rows
        if getattr(row, "organization_id", organization_id) != organization_id
    ]
    if not mismatches:
        return

    error_msg = f"[TENANT] Tenant isolation violation{f' in {label}' if label else ''}"
    logger.error(f"{error_msg}: {len(mismatches)} row(s) outside organization {organization_id}")
    if not IS_DEV:
        raise InternalError("Tenant isolation violation")


class TenantScopedAccessor:
    """
    Persistence wrapper bound to a single organization.

    Usage:
        accessor = TenantScopedAccessor.for_principal(db, principal)
        client = accessor.require(Client, client_id)
        accessor.update(client, name="New name")
    """

    def __init__(self, db: Session, organization_id: str):
        self.db = db
        self.organization_id = require_organization_id(organization_id)

    @classmethod
    def for_principal(cls, db: Session, principal) -> "TenantScopedAccessor":
        return cls(db, principal.organization_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def query(self, model: Type[M], **equals):
        query = self.db.query(model).filter(model.organization_id == self.organization_id)
        for column, value in equals.items():
            query = query.filter(getattr(model, column) == value)
        return query

    def get(self, model: Type[M], entity_id: str) -> Optional[M]:
        """Fetch by id within the organization; None if absent or foreign."""
        if not entity_id:
            return None
        row = self.query(model, id=entity_id).first()
        if row is not None:
            assert_rows_scoped([row], self.organization_id, label=model.__tablename__)
        return row

    def require(self, model: Type[M], entity_id: str) -> M:
        """Like get(), raising NotFound (no hint whether the id exists elsewhere)."""
        row = self.get(model, entity_id)
        if row is None:
            logger.info(
                f"[TENANT] Row not found in scope: table={model.__tablename__}, "
                f"id={entity_id}, organization_id={self.organization_id}"
            )
            raise NotFound(f"{model.__name__} not found")
        return row

    def lock(self, model: Type[M], entity_id: str) -> M:
        """require() with a row lock for read-modify-write on Postgres."""
        query = self.query(model, id=entity_id)
        if IS_POSTGRES:
            query = query.with_for_update()
        row = query.first()
        if row is None:
            raise NotFound(f"{model.__name__} not found")
        return row

    def list(self, model: Type[M], order_by=None, limit: Optional[int] = None, offset: int = 0, **equals) -> List[M]:
        query = self.query(model, **equals)
        if order_by is not None:
            query = query.order_by(order_by)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        rows = query.all()
        assert_rows_scoped(rows, self.organization_id, label=model.__tablename__)
        return rows

    def count(self, model: Type[M], **equals) -> int:
        return self.query(model, **equals).count()

    # ------------------------------------------------------------------
    # Writes (caller controls the transaction)
    # ------------------------------------------------------------------
    def create(self, model: Type[M], **fields) -> M:
        """Add a row stamped with the bound organization."""
        requested_org = fields.pop("organization_id", None)
        if requested_org is not None and requested_org != self.organization_id:
            raise ValidationFailed("organization_id", "foreign_organization")

        row = model(organization_id=self.organization_id, **fields)
        self.db.add(row)
        self.db.flush()
        return row

    def update(self, row: M, **fields) -> M:
        """Apply field changes to a row of this organization."""
        self._ensure_owned(row)
        if "organization_id" in fields and fields["organization_id"] != row.organization_id:
            raise ValidationFailed("organization_id", "immutable")
        fields.pop("organization_id", None)

        for key, value in fields.items():
            if not hasattr(row, key):
                raise ValidationFailed(key, "unknown_field")
            setattr(row, key, value)
        self.db.flush()
        return row

    def delete(self, row: M) -> None:
        self._ensure_owned(row)
        self.db.delete(row)
        self.db.flush()

    def update_where(self, model: Type[M], column: str, values: Iterable[Any], **changes) -> int:
        """Bulk update of rows whose `column` is in `values`, within the organization."""
        if "organization_id" in changes:
            raise ValidationFailed("organization_id", "immutable")
        values = list(values)
        if not values:
            return 0
        updated = (
            self.query(model)
            .filter(getattr(model, column).in_(values))
            .update(changes, synchronize_session=False)
        )
        self.db.flush()
        return updated

    def delete_where(self, model: Type[M], column: Optional[str] = None, values: Optional[Iterable[Any]] = None, **equals) -> int:
        """
        Bulk delete within the organization.

        `column`/`values` add an IN filter, e.g. delete_where(TaskComment, "task_id", task_ids).
        """
        query = self.query(model, **equals)
        if column is not None:
            values = list(values or [])
            if not values:
                return 0
            query = query.filter(getattr(model, column).in_(values))
        deleted = query.delete(synchronize_session=False)
        self.db.flush()
        return deleted

    def _ensure_owned(self, row: Any) -> None:
        if getattr(row, "organization_id", None) != self.organization_id:
            logger.error(
                f"[TENANT] Write rejected for foreign row: table={getattr(row, '__tablename__', '?')}, "
                f"organization_id={self.organization_id}"
            )
            raise NotFound("Not found")
