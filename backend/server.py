"""
Call-Center CRM - API Backend (taxonomies + import des points de service)

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware
import logging

from config import CORS_ORIGINS, client, db

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("callcenter_crm")

# Créer l'app
app = FastAPI(
    title="Call-Center CRM",
    description="Taxonomies de configuration et import des points de service",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== IMPORT DES ROUTES ====================

from routes import taxonomy, service_points, imports, event_log

# Routes avec préfixe /api
app.include_router(taxonomy.router, prefix="/api")
app.include_router(service_points.router, prefix="/api")
app.include_router(imports.router, prefix="/api")
app.include_router(event_log.router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Call-Center CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/api/health")
async def health():
    return {"status": "ok"}


# ==================== STARTUP ====================

@app.on_event("startup")
async def startup():
    logger.info("Call-Center CRM démarré")

    from services.taxonomy_store import NodeStore

    await NodeStore(db).ensure_indexes()
    await db.service_points.create_index("id", unique=True)
    await db.service_points.create_index([("governorate_id", 1), ("district_id", 1)])
    await db.import_runs.create_index("id", unique=True)
    await db.import_rows.create_index([("run_id", 1), ("index", 1)])
    await db.event_log.create_index("created_at")

    logger.info("Index MongoDB créés")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
