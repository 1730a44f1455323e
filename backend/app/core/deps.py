"""
Dependency Injection per il contesto della richiesta
Progetto: Fatturazione Veri*Factu (Gestionale Fatture)

Autore e indirizzo IP vengono passati ai service per il registro di audit.
L'autenticazione è fuori dal perimetro dell'applicazione: l'autore
arriva dall'header X-User impostato dal reverse proxy.
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, Request


@dataclass(frozen=True)
class RequestContext:
    """Autore e IP del client della richiesta corrente."""

    actor: str = "system"
    ip_address: Optional[str] = None


async def get_request_context(
    request: Request,
    x_user: Annotated[Optional[str], Header()] = None,
) -> RequestContext:
    """
    Dependency per ottenere autore e IP della richiesta.

    Args:
        request: Richiesta FastAPI
        x_user: Valore dell'header X-User (default "system")

    Returns:
        RequestContext con actor e ip_address
    """
    actor = (x_user or "").strip() or "system"
    ip_address = request.client.host if request.client else None
    return RequestContext(actor=actor, ip_address=ip_address)


# Type alias per uso comodo negli endpoint
CurrentContext = Annotated[RequestContext, Depends(get_request_context)]
