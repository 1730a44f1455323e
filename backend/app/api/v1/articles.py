"""
Router FastAPI per il catalogo articoli
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.article import ArticleCreate, ArticleRead, ArticleUpdate
from app.services.article_service import ArticleService

article_service = ArticleService()

router = APIRouter(
    prefix="/articles",
    tags=["Articoli"],
)


@router.get(
    "/",
    name="articoli_lista",
    summary="Lista articoli",
    description="Articoli attivi, con ricerca su nome, codice e descrizione.",
    response_model=list[ArticleRead],
    status_code=status.HTTP_200_OK,
)
async def get_articles(
    search: Optional[str] = Query(None, description="Testo da cercare"),
    db: AsyncSession = Depends(get_db),
) -> list[ArticleRead]:
    return await article_service.get_all(db, search=search)


@router.post(
    "/",
    name="articolo_crea",
    summary="Crea articolo",
    response_model=ArticleRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_article(
    data: ArticleCreate,
    db: AsyncSession = Depends(get_db),
) -> ArticleRead:
    return await article_service.create(db, data)


@router.get(
    "/{article_id}",
    name="articolo_dettaglio",
    summary="Dettaglio articolo",
    response_model=ArticleRead,
    status_code=status.HTTP_200_OK,
)
async def get_article(
    article_id: uuid.UUID = Path(..., description="UUID dell'articolo"),
    db: AsyncSession = Depends(get_db),
) -> ArticleRead:
    return await article_service.get_by_id(db, article_id)


@router.put(
    "/{article_id}",
    name="articolo_aggiorna",
    summary="Aggiorna articolo",
    response_model=ArticleRead,
    status_code=status.HTTP_200_OK,
)
async def update_article(
    data: ArticleUpdate,
    article_id: uuid.UUID = Path(..., description="UUID dell'articolo"),
    db: AsyncSession = Depends(get_db),
) -> ArticleRead:
    return await article_service.update(db, article_id, data)


@router.delete(
    "/{article_id}",
    name="articolo_elimina",
    summary="Elimina articolo",
    description="Eliminazione logica: le fatture esistenti non cambiano.",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_article(
    article_id: uuid.UUID = Path(..., description="UUID dell'articolo"),
    db: AsyncSession = Depends(get_db),
) -> None:
    await article_service.delete(db, article_id)
