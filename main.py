import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from database import db, ensure_indexes, now_utc
from errors import NotFound, register_error_handlers
from routers import auth, orders, products, users
from seed import seed_demo_data

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    logger.info("Marketplace API starting in %s mode", config.ENVIRONMENT)
    yield


app = FastAPI(title="Local Food Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(auth.router)
app.include_router(products.router)
app.include_router(orders.router)
app.include_router(users.router)


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"success": True, "message": "Local Food Marketplace API running"}


@app.get("/api/health")
def health():
    response = {
        "success": True,
        "message": "Server is running",
        "timestamp": now_utc().isoformat(),
        "environment": config.ENVIRONMENT,
        "database": "Not Available",
        "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
        "database_name": "Set" if os.getenv("DATABASE_NAME") else "Not Set",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "Connected"
    except Exception as e:
        logger.warning("Health check could not reach the database: %s", e)
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# ----------------------- Seed Demo Data -----------------------
@app.post("/api/seed")
def seed():
    if not config.is_development():
        raise NotFound("Route not found")
    return {"success": True, "data": seed_demo_data()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
