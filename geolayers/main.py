from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.responses import JSONResponse
import logging

from geolayers.config import settings
from geolayers.database import Base, engine
from geolayers.api.endpoints import layers, maps, documents
from geolayers.api.models import map_models  # noqa: F401  registers the tables

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="GeoLayers API",
    description="Camadas georreferenciadas: importação, visualização e exportação",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    logger.error(f"Invalid request to {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={
            "detail": jsonable_errors(exc),
            "message": "Parâmetros da requisição inválidos",
        }
    )

# HTTP errors raised by the endpoints
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    if exc.status_code >= 500:
        logger.error(f"HTTP error: {exc.status_code}, {exc.detail}")
    else:
        logger.info(f"HTTP error: {exc.status_code}, {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "message": str(exc.detail)
        }
    )

# Everything else
@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal Server Error",
            "message": "Erro interno do servidor. Tente novamente mais tarde."
        }
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


app.include_router(layers.router, prefix="/api")
app.include_router(maps.router, prefix="/api")
app.include_router(documents.router, prefix="/api")

@app.get("/health")
async def health_check():
    """
    Liveness check
    """
    return {"status": "healthy", "remote_configured": settings.remote_configured}

if __name__ == "__main__":
    uvicorn.run("geolayers.main:app", host="0.0.0.0", port=8000, reload=True)
