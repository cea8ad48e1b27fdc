import logging

from fastapi import FastAPI, Request
import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from db.database import create_db_and_tables
from routers.audit import router as audit_router
from routers.discrepancies import router as discrepancies_router
from routers.feed import router as feed_router
from routers.matching import router as matching_router
from routers.primary import router as primary_router
from routers.stock import router as stock_router
from core.auth import fastapi_users, auth_backend
from core.config import settings
from core.errors import InventoryError
from contextlib import asynccontextmanager
from schemas.users import UserRead, UserCreate, UserUpdate

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    yield


app = FastAPI(
    title="Retail Inventory Reconciliation API",
    description="Vendor feed reconciliation and stock mutations for multi-location retail",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"],)
app.include_router(fastapi_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_reset_password_router(), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_verify_router(UserRead), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])

# Reconciliation
app.include_router(feed_router, prefix="/feed", tags=["feed"])
app.include_router(matching_router, prefix="/matching", tags=["matching"])
app.include_router(discrepancies_router, prefix="/discrepancies", tags=["discrepancies"])

# Stock
app.include_router(stock_router, prefix="/stock", tags=["stock"])
app.include_router(primary_router, prefix="/primary", tags=["primary"])
app.include_router(audit_router, prefix="/audit", tags=["audit"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
