import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CORS_ORIGINS, SEED_ON_STARTUP
from .database import AsyncSessionLocal, init_db
from .routers import chat
from .seed import seed_reference_data

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Server starting... checking tables.")
    await init_db()
    if SEED_ON_STARTUP:
        async with AsyncSessionLocal() as db:
            await seed_reference_data(db)
    yield
    logger.info("🛑 Server shutting down.")

app = FastAPI(title="AI CFO Assistant API", lifespan=lifespan)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register Routers
app.include_router(chat.router)

@app.get("/")
def read_root():
    return {"status": "✅ API is running"}
