"""
API Routes
Progetto: Gestionale Preventivi e Fatture

Modulo per l'aggregazione dei router versionati.
"""

from app.api.v1 import documents

# Esportazione router
__all__ = ["documents"]
