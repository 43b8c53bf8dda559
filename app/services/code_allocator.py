"""Tenant scoped sequential codes (APT-000042)."""

import re
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import dialect_insert
from app.models.appointments import appointments
from app.models.code_sequences import code_sequences
from app.models.types import utcnow

logger = structlog.get_logger(__name__)

APPOINTMENT_PREFIX = "APT"

_TRAILING_DIGITS = re.compile(r"(\d+)$")


def scope_key(tenant_id: UUID | None) -> str:
    """Key of a tenant scope; untenanted records share the "default" scope."""
    return str(tenant_id) if tenant_id else "default"


def format_code(prefix: str, number: int) -> str:
    """Render a code as PREFIX-000000."""
    return f"{prefix}-{number:06d}"


def parse_code_number(code: str | None) -> int:
    """Trailing number of a code, 0 when it has none."""
    if not code:
        return 0
    match = _TRAILING_DIGITS.search(code)
    return int(match.group(1)) if match else 0


class CodeAllocator:
    """
    Hands out the next code of a (tenant, prefix) sequence.

    Allocation runs inside the caller's transaction: the counter row stays
    locked until the caller commits, and a rollback returns the number.
    """

    def __init__(self, db: AsyncSession):
        """Initialize allocator with a database session."""
        self.db = db

    async def next_code(self, tenant_id: UUID | None, prefix: str = APPOINTMENT_PREFIX) -> str:
        """
        Allocate the next code for a tenant.

        Args:
            tenant_id: Tenant scope, None for the default scope
            prefix: Code prefix

        Returns:
            Formatted code, e.g. APT-000042
        """
        key = scope_key(tenant_id)

        if not await self._increment(key, prefix):
            await self._seed(tenant_id, key, prefix)
            await self._increment(key, prefix)

        result = await self.db.execute(
            select(code_sequences.c.last_value).where(
                code_sequences.c.scope_key == key,
                code_sequences.c.prefix == prefix,
            )
        )
        number = result.scalar_one()
        code = format_code(prefix, number)

        logger.debug("code_allocated", scope=key, prefix=prefix, code=code)
        return code

    async def _increment(self, key: str, prefix: str) -> bool:
        result = await self.db.execute(
            update(code_sequences)
            .where(
                code_sequences.c.scope_key == key,
                code_sequences.c.prefix == prefix,
            )
            .values(last_value=code_sequences.c.last_value + 1, updated_at=utcnow())
        )
        return result.rowcount > 0

    async def _seed(self, tenant_id: UUID | None, key: str, prefix: str) -> None:
        """Create the counter row from the highest code already in use."""
        scope_filter = (
            appointments.c.tenant_id == tenant_id
            if tenant_id
            else appointments.c.tenant_id.is_(None)
        )
        result = await self.db.execute(
            select(appointments.c.code).where(
                scope_filter,
                appointments.c.code.like(f"{prefix}-%"),
            )
        )
        highest = max((parse_code_number(code) for code in result.scalars()), default=0)

        stmt = dialect_insert(self.db, code_sequences).values(
            scope_key=key,
            prefix=prefix,
            last_value=highest,
            updated_at=utcnow(),
        )
        await self.db.execute(stmt.on_conflict_do_nothing(index_elements=["scope_key", "prefix"]))
        logger.info("code_sequence_seeded", scope=key, prefix=prefix, last_value=highest)
