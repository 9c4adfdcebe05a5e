import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .context import RequestContext, public_context
from .database import init_database
from .errors import MarketplaceError
from .services.accounts import get_user
from .routes import admin, tasks, users, withdrawals
from .utils.cloudinary import upload_proof

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=config.LOG_LEVEL
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.STORE_BACKEND == "postgres":
        init_database()
    logger.info(f"CashByKing API started with {config.STORE_BACKEND} store")
    yield


app = FastAPI(title="CashByKing Backend", lifespan=lifespan)

# CORS settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users.router)
app.include_router(tasks.router)
app.include_router(withdrawals.router)
app.include_router(admin.router)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Routes
@app.get("/")
def read_root():
    return {"message": "CashByKing Backend API", "status": "running"}


@app.get("/api/health")
def health_check():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.post("/api/upload-proof")
def upload_proof_file(
    uid: str,
    file: UploadFile = File(...),
    ctx: RequestContext = Depends(public_context),
):
    get_user(ctx, uid)
    return {"success": True, **upload_proof(file, uid)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
