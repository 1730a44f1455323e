"""
Unit tests per validate_chain (funzione pura, nessun database).
"""

import dataclasses
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import ChainIntegrityError
from app.services.chain_service import ChainFailureReason, ChainLink, validate_chain
from app.services.verifactu import GENESIS_HASH


BASE_TIME = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def build_chain(count: int) -> list[ChainLink]:
    """Catena valida di `count` fatture, una ogni minuto."""
    links = []
    previous = GENESIS_HASH
    for sequence in range(1, count + 1):
        current = f"{sequence:064x}"
        links.append(
            ChainLink(
                id=uuid.uuid4(),
                invoice_number=f"VF2025-{sequence:03d}",
                invoice_sequence=sequence,
                previous_hash=previous,
                current_hash=current,
                finalized_at=BASE_TIME + timedelta(minutes=sequence),
            )
        )
        previous = current
    return links


def replace(link: ChainLink, **kwargs) -> ChainLink:
    return dataclasses.replace(link, **kwargs)


class TestValidateChain:

    def test_empty_chain_is_valid(self):
        result = validate_chain([])
        assert result.valid is True
        assert result.total_invoices == 0
        assert result.message == "Nessuna fattura da verificare"

    def test_valid_chain(self):
        result = validate_chain(build_chain(4))
        assert result.valid is True
        assert result.reason is None
        assert result.total_invoices == 4
        assert result.last_sequence == 4

    def test_first_invoice_must_point_to_genesis(self):
        links = build_chain(2)
        links[0] = replace(links[0], previous_hash="f" * 64)

        result = validate_chain(links)

        assert result.valid is False
        assert result.reason == ChainFailureReason.HASH_MISMATCH
        assert result.invoice_id == links[0].id

    def test_sequence_gap(self):
        links = build_chain(3)
        links[2] = replace(links[2], invoice_sequence=4)

        result = validate_chain(links)

        assert result.valid is False
        assert result.reason == ChainFailureReason.SEQUENCE_BREAK
        assert result.invoice_number == "VF2025-003"

    def test_sequence_must_start_at_one(self):
        links = [replace(link, invoice_sequence=link.invoice_sequence + 1) for link in build_chain(2)]
        result = validate_chain(links)
        assert result.reason == ChainFailureReason.SEQUENCE_BREAK
        assert result.invoice_id == links[0].id

    def test_tampered_previous_hash_reports_that_invoice(self):
        links = build_chain(4)
        links[2] = replace(links[2], previous_hash="e" * 64)

        result = validate_chain(links)

        assert result.valid is False
        assert result.reason == ChainFailureReason.HASH_MISMATCH
        assert result.invoice_number == "VF2025-003"

    def test_cancelled_before_successor_is_skipped(self):
        links = build_chain(2)
        cancelled = replace(
            links[0],
            is_cancelled=True,
            cancelled_at=links[0].finalized_at + timedelta(seconds=30),
        )
        successor = replace(links[1], previous_hash=GENESIS_HASH)

        assert validate_chain([cancelled, successor]).valid is True

    def test_cancelled_after_successor_still_links(self):
        links = build_chain(2)
        cancelled = replace(
            links[0],
            is_cancelled=True,
            cancelled_at=links[1].finalized_at + timedelta(minutes=5),
        )

        assert validate_chain([cancelled, links[1]]).valid is True

    def test_cancelled_invoice_keeps_its_slot(self):
        links = build_chain(3)
        links[1] = replace(links[1], is_cancelled=True, cancelled_at=BASE_TIME + timedelta(hours=1))
        del links[1]

        result = validate_chain(links)

        assert result.reason == ChainFailureReason.SEQUENCE_BREAK

    def test_invoices_without_hash_are_not_linked(self):
        links = build_chain(3)
        # Fattura 2 emessa con Veri*Factu disattivato
        links[1] = replace(links[1], previous_hash=None, current_hash=None)
        links[2] = replace(links[2], previous_hash=links[0].current_hash)

        assert validate_chain(links).valid is True

    def test_naive_timestamps_are_utc(self):
        links = build_chain(2)
        cancelled = replace(
            links[0],
            is_cancelled=True,
            cancelled_at=(links[0].finalized_at + timedelta(seconds=30)).replace(tzinfo=None),
        )
        successor = replace(
            links[1],
            previous_hash=GENESIS_HASH,
            finalized_at=links[1].finalized_at.replace(tzinfo=None),
        )

        assert validate_chain([cancelled, successor]).valid is True

    def test_idempotent(self):
        links = build_chain(3)
        links[1] = replace(links[1], previous_hash="0" * 64)
        assert validate_chain(links) == validate_chain(links)


class TestChainResult:

    def test_raise_for_status_on_valid_chain(self):
        result = validate_chain(build_chain(1))
        assert result.raise_for_status() is result

    def test_raise_for_status_on_broken_chain(self):
        links = build_chain(2)
        links[1] = replace(links[1], previous_hash="0" * 64)

        with pytest.raises(ChainIntegrityError) as exc_info:
            validate_chain(links).raise_for_status()

        assert exc_info.value.status_code == 409
        assert exc_info.value.extra["reason"] == "hash_mismatch"
        assert exc_info.value.extra["invoice_number"] == "VF2025-002"

    def test_as_dict(self):
        links = build_chain(2)
        links[1] = replace(links[1], invoice_sequence=3)
        data = validate_chain(links).as_dict()
        assert data["valid"] is False
        assert data["reason"] == "sequence_break"
        assert data["total_invoices"] == 2
