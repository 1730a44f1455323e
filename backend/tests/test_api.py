"""
Tests degli endpoint API v1 con httpx.AsyncClient.
"""

import uuid
from decimal import Decimal

from conftest import CERT_PASSWORD


COMPANY = {
    "company_name": "Talleres Prueba SL",
    "tax_id": "b12345678",
    "address": "Calle Mayor 1, Madrid",
    "email": "amministrazione@talleresprueba.es",
    "verifactu_enabled": True,
}

INVOICE = {
    "invoice_date": "2025-03-01",
    "client_name": "Cliente Uno SA",
    "client_tax_id": "A87654321",
    "lines": [
        {"description": "Cambio aceite", "quantity": "1", "unit_price": "50.00", "vat_rate": "21"},
        {"description": "Filtro", "quantity": "1", "unit_price": "50.00", "vat_rate": "21"},
    ],
}


async def create_company(client, **kwargs) -> dict:
    response = await client.post("/api/v1/companies/", json={**COMPANY, **kwargs})
    assert response.status_code == 201, response.text
    return response.json()


async def create_invoice(client, company_id: str, **kwargs) -> dict:
    response = await client.post(
        "/api/v1/invoices/",
        json={**INVOICE, "company_id": company_id, **kwargs},
        headers={"X-User": "mario"},
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestCompaniesAPI:

    async def test_create_and_read(self, client):
        company = await create_company(client)

        assert company["tax_id"] == "B12345678"
        assert company["last_invoice_sequence"] == 0
        assert company["has_signing_certificate"] is False
        assert "signing_certificate" not in company

        response = await client.get(f"/api/v1/companies/{company['id']}")
        assert response.status_code == 200
        assert response.json()["company_name"] == "Talleres Prueba SL"

    async def test_duplicate_tax_id(self, client):
        await create_company(client)
        response = await client.post("/api/v1/companies/", json=COMPANY)

        assert response.status_code == 409
        assert response.json()["error_code"] == "DUPLICATE_RESOURCE"

    async def test_not_found_shape(self, client):
        response = await client.get(f"/api/v1/companies/{uuid.uuid4()}")

        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "RESOURCE_NOT_FOUND"
        assert set(body) == {"detail", "error_code", "extra"}

    async def test_signing_certificate_validated_on_save(self, client, rsa_bundle):
        company = await create_company(client)
        url = f"/api/v1/companies/{company['id']}/verifactu"

        response = await client.put(
            url, json={"signing_certificate": rsa_bundle, "signing_certificate_password": "wrong"}
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "SIGNING_BAD_PASSPHRASE"

        response = await client.put(
            url, json={"signing_certificate": "bm90IGEgY2VydA==", "signing_certificate_password": "x"}
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "SIGNING_MALFORMED_CERTIFICATE"

        response = await client.put(
            url,
            json={"signing_certificate": rsa_bundle, "signing_certificate_password": CERT_PASSWORD},
        )
        assert response.status_code == 200
        assert response.json()["has_signing_certificate"] is True

        response = await client.put(url, json={"signing_certificate": ""})
        assert response.json()["has_signing_certificate"] is False

    async def test_chain_status(self, client):
        company = await create_company(client)
        invoice = await create_invoice(client, company["id"])
        await client.post(f"/api/v1/invoices/{invoice['id']}/finalize")

        response = await client.get(f"/api/v1/companies/{company['id']}/chain-status")

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["total_invoices"] == 1
        assert body["last_sequence"] == 1


class TestInvoicesAPI:

    async def test_lifecycle(self, client):
        company = await create_company(client)
        invoice = await create_invoice(client, company["id"])
        assert Decimal(invoice["total"]) == Decimal("121.00")
        assert invoice["status"] == "draft"

        response = await client.post(
            f"/api/v1/invoices/{invoice['id']}/finalize", headers={"X-User": "lucia"}
        )
        assert response.status_code == 200, response.text
        final = response.json()
        assert final["invoice_number"] == "VF2025-001"
        assert final["previous_hash"] == "GENESIS"
        assert final["signature_type"] == "placeholder"
        assert final["signature_is_attestation"] is False

        response = await client.post(
            f"/api/v1/invoices/{invoice['id']}/cancel", json={"reason": "duplicate"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = await client.get(f"/api/v1/invoices/{invoice['id']}/audit")
        entries = response.json()
        assert [e["action"] for e in entries] == ["CREATE", "FINALIZE", "CANCEL"]
        assert [e["actor"] for e in entries] == ["mario", "lucia", "system"]

    async def test_double_finalize_conflict(self, client):
        company = await create_company(client)
        invoice = await create_invoice(client, company["id"])
        await client.post(f"/api/v1/invoices/{invoice['id']}/finalize")

        response = await client.post(f"/api/v1/invoices/{invoice['id']}/finalize")

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_INVOICE_STATE"

    async def test_business_validation_error(self, client):
        company = await create_company(client)
        response = await client.post(
            "/api/v1/invoices/",
            json={**INVOICE, "company_id": company["id"], "lines": []},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "BUSINESS_VALIDATION_ERROR"

    async def test_qr_and_verify(self, client):
        company = await create_company(client)
        invoice = await create_invoice(client, company["id"])

        response = await client.get(f"/api/v1/invoices/{invoice['id']}/qr")
        assert response.status_code == 404

        await client.post(f"/api/v1/invoices/{invoice['id']}/finalize")

        response = await client.get(f"/api/v1/invoices/{invoice['id']}/qr")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

        response = await client.get(f"/api/v1/invoices/{invoice['id']}/verify")
        assert response.json()["verified"] is True

    async def test_delete_hides_draft(self, client):
        company = await create_company(client)
        invoice = await create_invoice(client, company["id"])

        response = await client.delete(f"/api/v1/invoices/{invoice['id']}")
        assert response.status_code == 204

        listing = (await client.get("/api/v1/invoices/", params={"company_id": company["id"]})).json()
        assert listing["total"] == 0

        listing = (
            await client.get(
                "/api/v1/invoices/",
                params={"company_id": company["id"], "include_hidden": "true"},
            )
        ).json()
        assert listing["total"] == 1


class TestArticlesAPI:

    async def test_crud(self, client):
        response = await client.post(
            "/api/v1/articles/",
            json={"code": "ace-5w30", "name": "Aceite 5W30", "unit_price": "12,50"},
        )
        assert response.status_code == 201, response.text
        article = response.json()
        assert article["code"] == "ACE-5W30"

        response = await client.get("/api/v1/articles/", params={"search": "aceite"})
        assert [a["id"] for a in response.json()] == [article["id"]]

        response = await client.delete(f"/api/v1/articles/{article['id']}")
        assert response.status_code == 204

        response = await client.get(f"/api/v1/articles/{article['id']}")
        assert response.status_code == 404
