# main.py
import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from callserver import models
from callserver.database import engine

# Import Routers from the split files
from callserver.api_main import router as api_router
from callserver.socket_main import router as socket_router

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
PORT = int(os.getenv("PORT", 5000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logger = logging.getLogger(__name__)

# This line creates the database tables based on the models defined in models.py
models.Base.metadata.create_all(bind=engine)

# --- Application Setup ---
app = FastAPI(title="Video Call Server")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Register Routes ---
app.include_router(
    api_router,
    prefix="/api",
    tags=["API"]
)
app.include_router(socket_router, tags=["Signaling"])


def run():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"🚀 Server running on port {PORT}")
    logger.info(f"🌐 Accepting requests from: {FRONTEND_URL}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    run()
