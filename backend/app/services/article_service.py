"""
Servizi per il catalogo articoli
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DuplicateError, NotFoundError
from app.models import Article
from app.schemas.article import ArticleCreate, ArticleUpdate

logger = logging.getLogger(__name__)


class ArticleService:
    """
    Service per la gestione del catalogo articoli.

    L'eliminazione è logica (is_active=False): le righe fattura
    mantengono il riferimento all'articolo.
    """

    async def get_all(
        self,
        db: AsyncSession,
        search: Optional[str] = None,
    ) -> list[Article]:
        """Articoli attivi, con ricerca opzionale su nome, codice e descrizione."""
        stmt = select(Article).where(Article.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    Article.name.ilike(pattern),
                    Article.code.ilike(pattern),
                    Article.description.ilike(pattern),
                )
            )
        result = await db.execute(stmt.order_by(Article.name))
        return list(result.scalars().all())

    async def get_by_id(self, db: AsyncSession, article_id: uuid.UUID) -> Article:
        article = await db.get(Article, article_id)
        if not article or not article.is_active:
            raise NotFoundError(f"Articolo {article_id} non trovato")
        return article

    async def _check_code_exists(
        self,
        db: AsyncSession,
        code: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        stmt = select(Article.id).where(Article.code == code)
        if exclude_id:
            stmt = stmt.where(Article.id != exclude_id)
        result = await db.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None

    async def create(self, db: AsyncSession, data: ArticleCreate) -> Article:
        """
        Raises:
            DuplicateError: Codice articolo già esistente
        """
        if data.code and await self._check_code_exists(db, data.code):
            raise DuplicateError(f"Articolo con codice '{data.code}' già esistente")

        article = Article(**data.model_dump(), is_active=True)
        try:
            db.add(article)
            await db.commit()
            await db.refresh(article)
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore IntegrityError creazione articolo: %s", e.orig)
            raise DuplicateError(f"Articolo con codice '{data.code}' già esistente")

        logger.info("Creato articolo: %s - %s", article.id, article.name)
        return article

    async def update(
        self,
        db: AsyncSession,
        article_id: uuid.UUID,
        data: ArticleUpdate,
    ) -> Article:
        article = await self.get_by_id(db, article_id)
        update_data = data.model_dump(exclude_unset=True)

        new_code = update_data.get("code")
        if new_code and new_code != article.code:
            if await self._check_code_exists(db, new_code, exclude_id=article_id):
                raise DuplicateError(f"Articolo con codice '{new_code}' già esistente")

        for field, value in update_data.items():
            setattr(article, field, value)

        await db.commit()
        await db.refresh(article)
        return article

    async def delete(self, db: AsyncSession, article_id: uuid.UUID) -> None:
        """Soft delete."""
        article = await self.get_by_id(db, article_id)
        article.is_active = False
        await db.commit()
        logger.info("Soft delete articolo: %s - %s", article.id, article.name)
