# main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

import config
from database import client, db, ensure_indexes
from errors import register_error_handlers
from routes import payment, rating, trip, user

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Carpool API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

app.include_router(user.router, prefix="/api/users")
app.include_router(trip.router, prefix="/api/trips")
app.include_router(payment.router, prefix="/api/payments")
app.include_router(rating.router, prefix="/api/ratings")


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def create_indexes():
    try:
        ensure_indexes(db)
    except Exception:
        logger.exception("Could not create MongoDB indexes")


@app.on_event("shutdown")
def shutdown_db_client():
    client.close()


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
