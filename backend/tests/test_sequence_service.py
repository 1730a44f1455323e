"""
Tests per SequenceAllocator e il registro dei lock per azienda.
"""

import asyncio
import uuid

import pytest

from app.core.exceptions import NotFoundError, SequenceConflictError
from app.core.locks import CompanyLockRegistry, acquire_company_advisory_lock, advisory_lock_key
from app.services.sequence_service import SequenceAllocator


class TestCompanyLocks:

    def test_same_company_same_lock(self):
        registry = CompanyLockRegistry()
        company_id = uuid.uuid4()
        assert registry.get(company_id) is registry.get(company_id)
        assert registry.get(company_id) is not registry.get(uuid.uuid4())

    def test_advisory_key_is_signed_bigint(self):
        key = advisory_lock_key(uuid.UUID("ffffffff-ffff-ffff-0000-000000000000"))
        assert key == -1
        assert -(2 ** 63) <= advisory_lock_key(uuid.uuid4()) < 2 ** 63

    async def test_advisory_lock_skipped_on_sqlite(self, db_session):
        assert await acquire_company_advisory_lock(db_session, uuid.uuid4()) is False


class TestSequenceAllocator:

    async def test_next_sequence_does_not_persist(self, db_session, company):
        allocator = SequenceAllocator(CompanyLockRegistry())

        assert await allocator.next_sequence(db_session, company.id) == 1
        assert await allocator.next_sequence(db_session, company.id) == 1

    async def test_commit_sequence_advances_counter(self, db_session, company):
        allocator = SequenceAllocator(CompanyLockRegistry())

        sequence = await allocator.next_sequence(db_session, company.id)
        await allocator.commit_sequence(db_session, company.id, sequence)
        await db_session.commit()

        refreshed = await allocator.get_company(db_session, company.id, for_update=True)
        assert refreshed.last_invoice_sequence == 1
        assert await allocator.next_sequence(db_session, company.id) == 2

    async def test_commit_sequence_rejects_stale_value(self, db_session, make_company):
        company = await make_company(last_invoice_sequence=5)
        allocator = SequenceAllocator(CompanyLockRegistry())

        with pytest.raises(SequenceConflictError) as exc_info:
            await allocator.commit_sequence(db_session, company.id, 5)
        assert exc_info.value.status_code == 409
        assert exc_info.value.extra["sequence"] == 5

        with pytest.raises(SequenceConflictError):
            await allocator.commit_sequence(db_session, company.id, 8)

    async def test_unknown_company(self, db_session):
        allocator = SequenceAllocator(CompanyLockRegistry())
        with pytest.raises(NotFoundError):
            await allocator.next_sequence(db_session, uuid.uuid4())

    async def test_reserve_serializes_same_company(self, db_session, company):
        registry = CompanyLockRegistry()
        allocator = SequenceAllocator(registry)
        events = []

        async def worker(name):
            async with allocator.reserve(db_session, company.id):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events == ["a-in", "a-out", "b-in", "b-out"]
        assert registry.is_locked(company.id) is False
