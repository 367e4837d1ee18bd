from __future__ import annotations

import logging
import re
import time

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.models.invoice import Invoice, InvoiceCounter

logger = logging.getLogger(__name__)

COUNTER_NAME = "invoice"

_DIGITS = re.compile(r"(\d+)(?!.*\d)")


def format_invoice_number(sequence: int, *, prefix: str | None = None, width: int | None = None) -> str:
    prefix = settings.invoice_number_prefix if prefix is None else prefix
    width = settings.invoice_number_width if width is None else width
    return f"{prefix}{int(sequence):0{int(width)}d}"


def parse_invoice_sequence(number: str | None) -> int | None:
    """Last run of digits in ``number``; ``None`` when absent or not positive."""
    match = _DIGITS.search(number or "")
    if not match:
        return None
    value = int(match.group(1))
    return value if value > 0 else None


def fallback_invoice_number(*, prefix: str | None = None) -> str:
    prefix = settings.invoice_number_prefix if prefix is None else prefix
    return f"{prefix}{int(time.time() * 1000)}"


async def latest_invoice_sequence(session: AsyncSession) -> int:
    latest = (
        await session.execute(
            select(Invoice.invoice_number).order_by(Invoice.issue_date.desc(), Invoice.created_at.desc()).limit(1)
        )
    ).scalar_one_or_none()
    return parse_invoice_sequence(latest) or 0


class InvoiceSequencer:
    name = "base"

    async def _allocate(self, session: AsyncSession) -> int:  # pragma: no cover - abstract
        raise NotImplementedError

    async def _peek(self, session: AsyncSession) -> int:  # pragma: no cover - abstract
        raise NotImplementedError

    async def next_number(self, session: AsyncSession) -> str:
        """Next invoice number, falling back to a timestamp number if storage fails."""
        try:
            return format_invoice_number(await self._allocate(session))
        except SQLAlchemyError as exc:
            await session.rollback()
            number = fallback_invoice_number()
            logger.warning(
                "invoice_sequencer_fallback",
                extra={"sequencer": self.name, "invoice_number": number, "error": str(exc)},
            )
            return number

    async def peek_next_number(self, session: AsyncSession) -> str:
        return format_invoice_number(await self._peek(session))

    async def observe_conflict(self, session: AsyncSession, number: str) -> None:
        """Called after ``number`` lost a unique-constraint race (session already rolled back)."""
        return None


class LatestInvoiceSequencer(InvoiceSequencer):
    """Read the newest invoice, add one.

    Two requests that read before either inserts get the same number; the unique
    constraint on ``invoices.invoice_number`` plus the assembler's retry loop is
    what keeps duplicates out of storage.
    """

    name = "latest"

    async def _allocate(self, session: AsyncSession) -> int:
        return await latest_invoice_sequence(session) + 1

    async def _peek(self, session: AsyncSession) -> int:
        return await self._allocate(session)


class CounterInvoiceSequencer(InvoiceSequencer):
    """Atomic ``UPDATE ... SET value = value + 1 RETURNING value`` on a counter row.

    The counter row stays locked until the caller commits or rolls back, so the
    number is consumed together with the invoice that carries it.
    """

    name = "counter"

    def __init__(self, counter_name: str = COUNTER_NAME) -> None:
        self.counter_name = counter_name

    async def _bump(self, session: AsyncSession) -> int | None:
        result = await session.execute(
            update(InvoiceCounter)
            .where(InvoiceCounter.name == self.counter_name)
            .values(value=InvoiceCounter.value + 1)
            .returning(InvoiceCounter.value)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def _seed(self, session: AsyncSession) -> None:
        start = await latest_invoice_sequence(session)
        session.add(InvoiceCounter(name=self.counter_name, value=start))
        try:
            await session.flush()
        except IntegrityError:
            # Another request seeded the row first.
            await session.rollback()

    async def _allocate(self, session: AsyncSession) -> int:
        value = await self._bump(session)
        if value is None:
            await self._seed(session)
            value = await self._bump(session)
        if value is None:
            raise SQLAlchemyError(f"invoice counter {self.counter_name!r} is missing")
        return int(value)

    async def _peek(self, session: AsyncSession) -> int:
        current = (
            await session.execute(select(InvoiceCounter.value).where(InvoiceCounter.name == self.counter_name))
        ).scalar_one_or_none()
        if current is None:
            current = await latest_invoice_sequence(session)
        return int(current) + 1

    async def observe_conflict(self, session: AsyncSession, number: str) -> None:
        taken = parse_invoice_sequence(number)
        if taken is None:
            return
        await session.execute(
            update(InvoiceCounter)
            .where(InvoiceCounter.name == self.counter_name, InvoiceCounter.value < taken)
            .values(value=taken)
            .execution_options(synchronize_session=False)
        )
        await session.commit()


def get_sequencer(kind: str | None = None) -> InvoiceSequencer:
    kind = kind or settings.invoice_sequencer
    if kind == "latest":
        return LatestInvoiceSequencer()
    return CounterInvoiceSequencer()
