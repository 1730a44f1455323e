"""
API v1 Routes
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from app.api.v1 import articles, companies, invoices

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(companies.router)
api_v1_router.include_router(articles.router)
api_v1_router.include_router(invoices.router)

# Esportazione
__all__ = ["api_v1_router"]
