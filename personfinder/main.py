from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from personfinder.api.routes import sessions
from personfinder.config import settings
from personfinder.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"personfinder starting (store backend: {settings.store_backend})")
    yield
    # Shutdown
    if settings.store_backend == "postgres":
        from personfinder.services.database import close_pool

        await close_pool()


app = FastAPI(
    title="PersonFinder",
    description="Person search with an adaptive disambiguation funnel",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(sessions.router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "personfinder"}
