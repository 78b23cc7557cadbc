"""
API v1 Routes
Progetto: Gestionale Preventivi e Fatture

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from app.api.v1 import documents

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(documents.router)
api_v1_router.include_router(documents.lines_router)

# Esportazione
__all__ = ["api_v1_router"]
