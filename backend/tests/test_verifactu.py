"""
Unit tests per le primitive Veri*Factu: hash, firma, QR, numerazione.
"""

import base64
import hashlib
import json
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest

from app.core.exceptions import SigningError
from app.services.verifactu import (
    GENESIS_HASH,
    InvoiceSnapshot,
    Signature,
    SignatureKind,
    SigningCredential,
    build_qr_payload,
    compute_invoice_hash,
    format_invoice_number,
    format_timestamp,
    is_final_number,
    load_signing_credential,
    placeholder_signature,
    render_qr_png,
    sign_hash,
    verify_signature,
)

from conftest import CERT_PASSWORD


COMPANY_ID = uuid.UUID("5f1c3a2e-8d4b-4c1a-9e7f-0a1b2c3d4e5f")
TIMESTAMP = "2025-03-01T10:15:30.123Z"


def make_snapshot(**kwargs) -> InvoiceSnapshot:
    data = {
        "company_id": str(COMPANY_ID),
        "invoice_number": "VF2025-001",
        "invoice_sequence": 1,
        "invoice_date": date(2025, 3, 1),
        "client_tax_id": "A87654321",
        "subtotal": Decimal("100.00"),
        "total_vat": Decimal("21.00"),
        "total": Decimal("121.00"),
        "previous_hash": GENESIS_HASH,
        "timestamp": TIMESTAMP,
    }
    data.update(kwargs)
    return InvoiceSnapshot(**data)


# ============================================================
# Hash
# ============================================================


class TestInvoiceHash:
    """Tests per lo snapshot canonico e l'hash SHA-256."""

    def test_canonical_json_key_order(self):
        payload = json.loads(make_snapshot().canonical_json())
        assert list(payload) == [
            "company_id",
            "invoice_number",
            "invoice_sequence",
            "date",
            "client_cif",
            "subtotal",
            "total_vat",
            "total",
            "previous_hash",
            "timestamp",
        ]

    def test_canonical_json_money_as_two_decimals(self):
        snapshot = make_snapshot(subtotal=Decimal("100"), total_vat=Decimal("21.005"))
        payload = json.loads(snapshot.canonical_json())
        assert payload["subtotal"] == "100.00"
        assert payload["total_vat"] == "21.01"
        assert payload["date"] == "2025-03-01"

    def test_hash_is_sha256_of_canonical_json(self):
        snapshot = make_snapshot()
        expected = hashlib.sha256(snapshot.canonical_json().encode("utf-8")).hexdigest()
        assert compute_invoice_hash(snapshot) == expected
        assert len(expected) == 64

    def test_hash_deterministic(self):
        assert compute_invoice_hash(make_snapshot()) == compute_invoice_hash(make_snapshot())

    def test_hash_changes_with_timestamp(self):
        other = make_snapshot(timestamp="2025-03-01T10:15:30.124Z")
        assert compute_invoice_hash(make_snapshot()) != compute_invoice_hash(other)

    def test_hash_changes_with_previous_hash(self):
        other = make_snapshot(previous_hash="a" * 64)
        assert compute_invoice_hash(make_snapshot()) != compute_invoice_hash(other)

    def test_missing_previous_hash_is_genesis(self):
        snapshot = make_snapshot(previous_hash=None)
        assert json.loads(snapshot.canonical_json())["previous_hash"] == GENESIS_HASH


class TestFormatTimestamp:

    def test_milliseconds_and_z_suffix(self):
        moment = datetime(2025, 3, 1, 10, 15, 30, 123456, tzinfo=timezone.utc)
        assert format_timestamp(moment) == "2025-03-01T10:15:30.123Z"

    def test_naive_datetime_is_utc(self):
        assert format_timestamp(datetime(2025, 1, 2, 3, 4, 5)) == "2025-01-02T03:04:05.000Z"

    def test_default_is_now(self):
        value = format_timestamp()
        assert value.endswith("Z")
        assert len(value) == len("2025-03-01T10:15:30.123Z")


# ============================================================
# Firma
# ============================================================


class TestPlaceholderSignature:

    def test_without_credential_returns_placeholder(self):
        signature = sign_hash(
            "a" * 64,
            credential=None,
            tax_id="B12345678",
            software_id="SYS-FACT-001",
            timestamp=TIMESTAMP,
        )
        assert signature.kind == SignatureKind.PLACEHOLDER
        assert signature.is_attestation is False
        assert signature.value == placeholder_signature(
            "a" * 64, "B12345678", "SYS-FACT-001", TIMESTAMP
        )

    def test_placeholder_digest_payload(self):
        payload = {
            "hash": "a" * 64,
            "cif": "B12345678",
            "software_id": "SYS-FACT-001",
            "timestamp": TIMESTAMP,
        }
        expected = hashlib.sha256(
            json.dumps(payload, separators=(",", ":")).encode("utf-8")
        ).hexdigest()
        assert placeholder_signature("a" * 64, "B12345678", "SYS-FACT-001", TIMESTAMP) == expected

    def test_placeholder_verification(self):
        value = placeholder_signature("a" * 64, "B12345678", "SYS-FACT-001", TIMESTAMP)
        signature = Signature(SignatureKind.PLACEHOLDER, value)
        kwargs = {"credential": None, "tax_id": "B12345678", "software_id": "SYS-FACT-001"}
        assert verify_signature("a" * 64, signature, timestamp=TIMESTAMP, **kwargs) is True
        assert verify_signature("b" * 64, signature, timestamp=TIMESTAMP, **kwargs) is False


class TestCertificateSignature:

    @pytest.mark.parametrize("bundle_fixture", ["rsa_bundle", "ec_bundle"])
    def test_sign_and_verify(self, request, bundle_fixture):
        credential = SigningCredential(request.getfixturevalue(bundle_fixture), CERT_PASSWORD)
        kwargs = {
            "credential": credential,
            "tax_id": "B12345678",
            "software_id": "SYS-FACT-001",
            "timestamp": TIMESTAMP,
        }

        signature = sign_hash("c" * 64, **kwargs)

        assert signature.kind == SignatureKind.CERTIFICATE
        assert signature.is_attestation is True
        base64.b64decode(signature.value, validate=True)
        assert verify_signature("c" * 64, signature, **kwargs) is True
        assert verify_signature("d" * 64, signature, **kwargs) is False

    def test_certificate_signature_without_credential_is_invalid(self, rsa_bundle):
        credential = SigningCredential(rsa_bundle, CERT_PASSWORD)
        signed = sign_hash(
            "c" * 64,
            credential=credential,
            tax_id="B12345678",
            software_id=None,
            timestamp=TIMESTAMP,
        )
        signature = Signature(signed.kind, signed.value)
        assert verify_signature(
            "c" * 64,
            signature,
            credential=None,
            tax_id="B12345678",
            software_id=None,
            timestamp=TIMESTAMP,
        ) is False

    def test_stored_certificate_wins_over_configured(self, rsa_bundle, ec_bundle):
        kwargs = {"tax_id": "B12345678", "software_id": None, "timestamp": TIMESTAMP}
        signature = sign_hash(
            "c" * 64, credential=SigningCredential(rsa_bundle, CERT_PASSWORD), **kwargs
        )
        assert signature.certificate_pem.startswith("-----BEGIN CERTIFICATE-----")

        rotated = SigningCredential(ec_bundle, CERT_PASSWORD)
        assert verify_signature("c" * 64, signature, credential=rotated, **kwargs) is True
        assert verify_signature("c" * 64, signature, credential=None, **kwargs) is True

        garbled = Signature(signature.kind, signature.value, certificate_pem="not a pem")
        assert verify_signature("c" * 64, garbled, credential=None, **kwargs) is False

    def test_bad_passphrase(self, rsa_bundle):
        with pytest.raises(SigningError) as exc_info:
            load_signing_credential(SigningCredential(rsa_bundle, "wrong"))
        assert exc_info.value.error_code == SigningError.BAD_PASSPHRASE
        assert exc_info.value.is_bad_passphrase

    def test_malformed_bundle(self):
        garbage = base64.b64encode(b"questo non e un certificato").decode("ascii")
        with pytest.raises(SigningError) as exc_info:
            load_signing_credential(SigningCredential(garbage, CERT_PASSWORD))
        assert exc_info.value.error_code == SigningError.MALFORMED_CERTIFICATE

    def test_invalid_base64(self):
        with pytest.raises(SigningError) as exc_info:
            load_signing_credential(SigningCredential("%%% non base64 %%%", None))
        assert exc_info.value.error_code == SigningError.MALFORMED_CERTIFICATE

    def test_signing_never_falls_back_to_placeholder(self, rsa_bundle):
        with pytest.raises(SigningError):
            sign_hash(
                "c" * 64,
                credential=SigningCredential(rsa_bundle, "wrong"),
                tax_id="B12345678",
                software_id=None,
                timestamp=TIMESTAMP,
            )

    def test_credential_from_company(self, rsa_bundle):
        class CompanyStub:
            signing_certificate = rsa_bundle
            signing_certificate_password = ""

        credential = SigningCredential.from_company(CompanyStub())
        assert credential.certificate == rsa_bundle
        assert credential.password is None

        CompanyStub.signing_certificate = None
        assert SigningCredential.from_company(CompanyStub()) is None


# ============================================================
# QR
# ============================================================


class TestQRPayload:

    def test_payload_fields(self):
        payload = build_qr_payload(
            tax_id="B12345678",
            invoice_number="VF2025-001",
            invoice_date=date(2025, 3, 1),
            total=Decimal("121"),
            current_hash="0123456789abcdef" * 4,
            base_url="https://verifactu.example.es/verify",
            hash_length=16,
        )
        parsed = urlparse(payload)
        params = parse_qs(parsed.query)

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://verifactu.example.es/verify"
        assert params == {
            "nif": ["B12345678"],
            "num": ["VF2025-001"],
            "fecha": ["2025-03-01"],
            "importe": ["121.00"],
            "hash": ["0123456789abcdef"],
        }

    def test_png_rendering(self):
        image = render_qr_png("https://verifactu.example.es/verify?nif=B12345678")
        assert image.startswith(b"\x89PNG\r\n\x1a\n")


# ============================================================
# Numerazione
# ============================================================


class TestInvoiceNumbering:

    def test_verifactu_number(self):
        assert format_invoice_number(1, True, date(2025, 3, 1)) == "VF2025-001"

    def test_plain_number(self):
        assert format_invoice_number(42, False, date(2024, 12, 31)) == "F2024-042"

    def test_padding_grows_past_three_digits(self):
        assert format_invoice_number(1234, True, date(2025, 1, 1)) == "VF2025-1234"

    def test_custom_padding(self):
        assert format_invoice_number(7, True, date(2025, 1, 1), padding_digits=5) == "VF2025-00007"

    @pytest.mark.parametrize(
        "number,expected",
        [
            ("VF2025-001", True),
            ("F2025-12", True),
            ("DRAFT-1A2B3C4D", False),
            ("PRO-2025-1", False),
            ("VF25-001", False),
            ("", False),
        ],
    )
    def test_is_final_number(self, number, expected):
        assert is_final_number(number) is expected
