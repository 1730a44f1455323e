"""
Pytest configuration and fixtures.

I test dei service girano su un database SQLite su file (aiosqlite),
ricreato per ogni test; i test delle API usano httpx.AsyncClient con
la dependency get_db sovrascritta.
"""

import base64
import datetime
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.locks import company_locks
from app.models import Base, Company
from app.schemas.invoice import InvoiceCreate, InvoiceLineCreate
from app.services.invoice_service import InvoiceService


CERT_PASSWORD = "s3cret-pass"


# ============================================================
# Database
# ============================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Engine su un file SQLite temporaneo con lo schema creato."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Sessione database fresca per ogni test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def reset_company_locks():
    """I lock per azienda sono legati all'event loop del singolo test."""
    company_locks.clear()
    yield
    company_locks.clear()


# ============================================================
# Certificati di firma
# ============================================================


def _self_signed_bundle(private_key, password: str | None) -> str:
    subject = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "ES"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Talleres Prueba SL"),
        x509.NameAttribute(NameOID.COMMON_NAME, "B12345678"),
    ])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(private_key, hashes.SHA256())
    )
    encryption = (
        serialization.BestAvailableEncryption(password.encode("utf-8"))
        if password
        else serialization.NoEncryption()
    )
    bundle = pkcs12.serialize_key_and_certificates(
        b"verifactu", private_key, certificate, None, encryption
    )
    return base64.b64encode(bundle).decode("ascii")


@pytest.fixture(scope="session")
def rsa_bundle() -> str:
    """Bundle PKCS#12 RSA in base64, protetto da CERT_PASSWORD."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return _self_signed_bundle(key, CERT_PASSWORD)


@pytest.fixture(scope="session")
def ec_bundle() -> str:
    """Bundle PKCS#12 ECDSA P-256 in base64, protetto da CERT_PASSWORD."""
    key = ec.generate_private_key(ec.SECP256R1())
    return _self_signed_bundle(key, CERT_PASSWORD)


# ============================================================
# Dati di test
# ============================================================


@pytest_asyncio.fixture
async def make_company(db_session: AsyncSession):
    """Factory di aziende persistite."""
    counter = {"n": 0}

    async def _make(**kwargs) -> Company:
        counter["n"] += 1
        data = {
            "company_name": f"Talleres Prueba {counter['n']} SL",
            "tax_id": f"B1234567{counter['n']}",
            "address": "Calle Mayor 1, Madrid",
            "verifactu_enabled": True,
            "last_invoice_sequence": 0,
        }
        data.update(kwargs)
        company = Company(**data)
        db_session.add(company)
        await db_session.commit()
        await db_session.refresh(company)
        return company

    return _make


@pytest_asyncio.fixture
async def company(make_company) -> Company:
    """Azienda con Veri*Factu attivo e nessun certificato."""
    return await make_company()


def invoice_payload(company_id, **kwargs) -> InvoiceCreate:
    """Bozza con due righe da 50.00 al 21% (100.00 / 21.00 / 121.00)."""
    data = {
        "company_id": company_id,
        "invoice_date": datetime.date(2025, 3, 1),
        "client_name": "Cliente Uno SA",
        "client_tax_id": "A87654321",
        "client_address": "Avenida Diagonal 10, Barcelona",
        "lines": [
            InvoiceLineCreate(
                description="Cambio aceite",
                quantity=Decimal("1"),
                unit_price=Decimal("50.00"),
                vat_rate=Decimal("21.00"),
            ),
            InvoiceLineCreate(
                description="Filtro",
                quantity=Decimal("1"),
                unit_price=Decimal("50.00"),
                vat_rate=Decimal("21.00"),
            ),
        ],
    }
    data.update(kwargs)
    return InvoiceCreate(**data)


@pytest.fixture
def invoice_service() -> InvoiceService:
    return InvoiceService()


@pytest_asyncio.fixture
async def make_invoice(db_session: AsyncSession, invoice_service: InvoiceService):
    """Factory di bozze create tramite il service."""

    async def _make(company: Company, **kwargs):
        return await invoice_service.create(
            db_session, invoice_payload(company.id, **kwargs), actor="tester"
        )

    return _make


# ============================================================
# Client HTTP
# ============================================================


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Client di test con la sessione database sovrascritta."""
    from app.core.database import get_db
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
