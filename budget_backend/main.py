from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.errors import DomainError
from .core.logging import configure_logging, get_logger
from .routers import register_routers
from .schemas import ErrorOut

configure_logging()
logger = get_logger(__name__)

app = FastAPI(title=settings.APP_NAME, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.info("request.domain_error", path=request.url.path, kind=exc.kind, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=ErrorOut(**exc.to_dict()).model_dump())


@app.get("/health")
def health():
    return {"status": "ok"}


register_routers(app)
