"""
Primitive Veri*Factu
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Funzioni pure, senza accesso al database:
- hash SHA-256 concatenato su uno snapshot canonico della fattura
- firma con certificato PKCS#12 o digest placeholder senza chiave
- payload QR di verifica e relativa immagine PNG
- formato del numero fattura definitivo
"""

import base64
import binascii
import hashlib
import io
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlencode

import qrcode
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from app.core.config import settings
from app.core.exceptions import SigningError

# Logger per questo modulo
logger = logging.getLogger(__name__)

GENESIS_HASH = "GENESIS"
TWO_PLACES = Decimal("0.01")

# Numeri assegnati alla finalizzazione: VF2025-001, F2025-001
FINAL_NUMBER_PATTERN = re.compile(r"^(VF|F)\d{4}-\d+$")


def quantize_money(value: Any) -> Decimal:
    """Arrotonda un importo a 2 decimali (ROUND_HALF_UP)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """
    Timestamp ISO-8601 UTC con millisecondi e suffisso Z.

    Esempio: 2025-03-01T10:15:30.123Z
    """
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


# ------------------------------------------------------------
# Snapshot canonico e hash
# ------------------------------------------------------------
@dataclass(frozen=True)
class InvoiceSnapshot:
    """Dati della fattura che entrano nell'hash, nell'ordine canonico."""

    company_id: str
    invoice_number: str
    invoice_sequence: int
    invoice_date: date
    client_tax_id: str
    subtotal: Decimal
    total_vat: Decimal
    total: Decimal
    previous_hash: str
    timestamp: str

    @classmethod
    def from_invoice(cls, invoice, previous_hash: Optional[str], timestamp: str) -> "InvoiceSnapshot":
        return cls(
            company_id=str(invoice.company_id),
            invoice_number=invoice.invoice_number,
            invoice_sequence=invoice.invoice_sequence,
            invoice_date=invoice.invoice_date,
            client_tax_id=invoice.client_tax_id or "",
            subtotal=quantize_money(invoice.subtotal),
            total_vat=quantize_money(invoice.total_vat),
            total=quantize_money(invoice.total),
            previous_hash=previous_hash or GENESIS_HASH,
            timestamp=timestamp,
        )

    def canonical_json(self) -> str:
        # L'ordine delle chiavi fa parte del formato
        payload = {
            "company_id": self.company_id,
            "invoice_number": self.invoice_number,
            "invoice_sequence": self.invoice_sequence,
            "date": self.invoice_date.isoformat(),
            "client_cif": self.client_tax_id,
            "subtotal": f"{quantize_money(self.subtotal):.2f}",
            "total_vat": f"{quantize_money(self.total_vat):.2f}",
            "total": f"{quantize_money(self.total):.2f}",
            "previous_hash": self.previous_hash or GENESIS_HASH,
            "timestamp": self.timestamp,
        }
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def compute_invoice_hash(snapshot: InvoiceSnapshot) -> str:
    """SHA-256 esadecimale (64 caratteri) dello snapshot canonico."""
    return hashlib.sha256(snapshot.canonical_json().encode("utf-8")).hexdigest()


# ------------------------------------------------------------
# Firma
# ------------------------------------------------------------
class SignatureKind(str, Enum):
    """Tipo di firma salvato in Invoice.signature_type."""
    CERTIFICATE = "certificate"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class Signature:
    """
    Firma di una fattura.

    Solo CERTIFICATE attesta l'origine: PLACEHOLDER è un digest
    deterministico senza chiave, ricalcolabile da chiunque.
    `certificate_pem` è il certificato del firmatario (solo CERTIFICATE),
    così la firma resta verificabile dopo un cambio di certificato.
    """

    kind: SignatureKind
    value: str
    certificate_pem: Optional[str] = None

    @property
    def is_attestation(self) -> bool:
        return self.kind == SignatureKind.CERTIFICATE


@dataclass(frozen=True)
class SigningCredential:
    """Bundle PKCS#12 in base64 e relativa passphrase."""

    certificate: str
    password: Optional[str] = None

    @classmethod
    def from_company(cls, company) -> Optional["SigningCredential"]:
        """Credenziale dell'azienda, None se nessun certificato è configurato."""
        if not company.signing_certificate:
            return None
        return cls(
            certificate=company.signing_certificate,
            password=company.signing_certificate_password or None,
        )


def _looks_like_pfx(data: bytes) -> bool:
    """
    True se i byte iniziano come una struttura PFX DER:
    SEQUENCE seguita da INTEGER version = 3.
    """
    if len(data) < 5 or data[0] != 0x30:
        return False
    length_byte = data[1]
    header = 2 if length_byte < 0x80 else 2 + (length_byte & 0x7F)
    return data[header:header + 3] == b"\x02\x01\x03"


def load_signing_credential(credential: SigningCredential):
    """
    Decodifica il bundle e restituisce (chiave privata, certificato).

    Raises:
        SigningError: MALFORMED_CERTIFICATE se il bundle non è leggibile
            o non contiene una chiave supportata, BAD_PASSPHRASE se il
            bundle è un PFX valido ma la passphrase non lo apre
    """
    try:
        raw = base64.b64decode(credential.certificate, validate=True)
    except (binascii.Error, ValueError):
        raise SigningError(
            "Il certificato non è un base64 valido",
            error_code=SigningError.MALFORMED_CERTIFICATE,
        )

    password = credential.password.encode("utf-8") if credential.password else None

    try:
        private_key, certificate, _ = pkcs12.load_key_and_certificates(raw, password)
    except (ValueError, TypeError) as e:
        if _looks_like_pfx(raw):
            logger.warning("Passphrase del certificato di firma non valida")
            raise SigningError(
                "Passphrase del certificato non valida",
                error_code=SigningError.BAD_PASSPHRASE,
            ) from e
        raise SigningError(
            "Il certificato non è un bundle PKCS#12 valido",
            error_code=SigningError.MALFORMED_CERTIFICATE,
        ) from e

    if private_key is None:
        raise SigningError(
            "Chiave privata non trovata nel certificato",
            error_code=SigningError.MALFORMED_CERTIFICATE,
        )
    if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise SigningError(
            f"Tipo di chiave non supportato: {type(private_key).__name__}",
            error_code=SigningError.MALFORMED_CERTIFICATE,
        )

    return private_key, certificate


def placeholder_signature(
    invoice_hash: str,
    tax_id: str,
    software_id: Optional[str],
    timestamp: str,
) -> str:
    """Digest SHA-256 di {hash, cif, software_id, timestamp}."""
    payload = {
        "hash": invoice_hash,
        "cif": tax_id or "",
        "software_id": software_id or settings.verifactu_software_id,
        "timestamp": timestamp,
    }
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def sign_hash(
    invoice_hash: str,
    *,
    credential: Optional[SigningCredential],
    tax_id: str,
    software_id: Optional[str],
    timestamp: str,
) -> Signature:
    """
    Firma l'hash della fattura.

    Con credenziale: RSA PKCS#1 v1.5 / SHA-256 (o ECDSA / SHA-256),
    valore in base64. Senza credenziale: digest placeholder.
    Una credenziale presente ma inutilizzabile solleva SigningError,
    senza ripiego sul placeholder.
    """
    if credential is None:
        return Signature(
            kind=SignatureKind.PLACEHOLDER,
            value=placeholder_signature(invoice_hash, tax_id, software_id, timestamp),
        )

    private_key, certificate = load_signing_credential(credential)
    data = invoice_hash.encode("utf-8")

    if isinstance(private_key, rsa.RSAPrivateKey):
        raw_signature = private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    else:
        raw_signature = private_key.sign(data, ec.ECDSA(hashes.SHA256()))

    certificate_pem = None
    if certificate is not None:
        certificate_pem = certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    return Signature(
        kind=SignatureKind.CERTIFICATE,
        value=base64.b64encode(raw_signature).decode("ascii"),
        certificate_pem=certificate_pem,
    )


def verify_signature(
    invoice_hash: str,
    signature: Signature,
    *,
    credential: Optional[SigningCredential],
    tax_id: str,
    software_id: Optional[str],
    timestamp: str,
) -> bool:
    """
    Verifica una firma salvata.

    Il placeholder viene ricalcolato; la firma con certificato viene
    verificata con la chiave pubblica del certificato salvato con la
    firma o, in sua assenza, di quello configurato.
    """
    if signature.kind == SignatureKind.PLACEHOLDER:
        expected = placeholder_signature(invoice_hash, tax_id, software_id, timestamp)
        return expected == signature.value

    if signature.certificate_pem:
        try:
            certificate = x509.load_pem_x509_certificate(signature.certificate_pem.encode("ascii"))
        except ValueError:
            logger.warning("Certificato salvato con la firma non leggibile")
            return False
        public_key = certificate.public_key()
    elif credential is None:
        return False
    else:
        private_key, certificate = load_signing_credential(credential)
        public_key = certificate.public_key() if certificate is not None else private_key.public_key()

    try:
        raw_signature = base64.b64decode(signature.value, validate=True)
    except (binascii.Error, ValueError):
        return False

    data = invoice_hash.encode("utf-8")
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(raw_signature, data, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(raw_signature, data, ec.ECDSA(hashes.SHA256()))
        else:
            return False
    except InvalidSignature:
        return False
    return True


# ------------------------------------------------------------
# QR
# ------------------------------------------------------------
def build_qr_payload(
    *,
    tax_id: str,
    invoice_number: str,
    invoice_date: date,
    total: Decimal,
    current_hash: str,
    base_url: Optional[str] = None,
    hash_length: Optional[int] = None,
) -> str:
    """URL di verifica: ?nif=..&num=..&fecha=..&importe=..&hash=.."""
    base_url = base_url or settings.verifactu_qr_base_url
    hash_length = hash_length or settings.verifactu_qr_hash_length
    params = {
        "nif": tax_id,
        "num": invoice_number,
        "fecha": invoice_date.isoformat(),
        "importe": f"{quantize_money(total):.2f}",
        "hash": current_hash[:hash_length],
    }
    return f"{base_url}?{urlencode(params)}"


def render_qr_png(payload: str) -> bytes:
    """Immagine PNG del QR (correzione errori M, bordo 1)."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=1,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    image.save(buffer)
    return buffer.getvalue()


# ------------------------------------------------------------
# Numerazione
# ------------------------------------------------------------
def format_invoice_number(
    sequence: int,
    verifactu_enabled: bool,
    issue_date: date,
    padding_digits: Optional[int] = None,
) -> str:
    """
    Numero fattura definitivo.

    VF<anno>-<seq> con Veri*Factu attivo, F<anno>-<seq> altrimenti.
    L'anno è quello della data di emissione.
    """
    padding_digits = padding_digits or settings.invoice_number_padding
    prefix = "VF" if verifactu_enabled else "F"
    return f"{prefix}{issue_date.year}-{sequence:0{padding_digits}d}"


def is_final_number(invoice_number: str) -> bool:
    """True se il numero ha il formato riservato alle fatture definitive."""
    return bool(FINAL_NUMBER_PATTERN.match(invoice_number or ""))
