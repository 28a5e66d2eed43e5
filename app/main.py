import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger

from app.api.v1 import index
from app.api.v1 import auth
from app.api.v1 import user
from app.api.v1 import products
from app.api.v1 import bulk
from app.api.v1 import workflow
from app.api.v1 import audit
from app.api.v1 import webhooks

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.core import engine, create_db_and_tables
from app.services.oracle import close_oracle, get_oracle
from app.services.workflow import resume_pending_anchors

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()

    # Anchors interrupted by a restart are picked up without blocking startup
    loop = asyncio.get_running_loop()
    loop.run_in_executor(None, resume_pending_anchors, engine, get_oracle())

    logger.info(f"{settings.app_name} started")
    yield

    close_oracle()
    logger.info(f"{settings.app_name} stopped")


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# Middlewares
origins = []

if settings.allowed_hosts:
    origins = settings.allowed_hosts.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routes. Bulk routes go before the per-product workflow routes so
# "/products/bulk/submit" is not read as a product id.
app.include_router(index.router, prefix="/api/v1")
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Auth"])
app.include_router(user.router, prefix="/api/v1/users")
app.include_router(bulk.router, prefix="/api/v1/products/bulk")
app.include_router(products.router, prefix="/api/v1/products")
app.include_router(workflow.router, prefix="/api/v1/products")
app.include_router(audit.router, prefix="/api/v1/audit-logs")
app.include_router(webhooks.router, prefix="/api/v1/webhooks")

# Static files serving (passport QR codes)
app.mount("/static", StaticFiles(directory=settings.static_dir), name="static")

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=None,
    )
