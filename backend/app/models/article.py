"""
Modello SQLAlchemy per il catalogo articoli
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)
"""


from __future__ import annotations
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import SoftDeleteMixin, TimestampMixin, UUIDMixin


class Article(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """
    Articolo/servizio di catalogo.

    Le righe fattura copiano descrizione, prezzo e IVA al momento
    della scrittura: modificare un articolo non altera le fatture esistenti.
    """

    __tablename__ = "articles"

    code: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        unique=True,
        doc="Codice articolo (opzionale, univoco)",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Nome articolo",
    )

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="Prezzo unitario (imponibile)",
    )

    vat_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("21.00"),
        doc="Aliquota IVA (default 21%)",
    )

    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_articles_name", "name"),
        CheckConstraint("unit_price >= 0", name="ck_articles_unit_price_positive"),
        CheckConstraint(
            "vat_rate >= 0 AND vat_rate <= 100",
            name="ck_articles_vat_rate_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<Article(id={self.id}, code={self.code}, name={self.name})>"
