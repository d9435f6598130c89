import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from citadel.core.config import settings
from citadel.core.database import Base, engine
from citadel.models import models  # noqa: F401  (registers tables)
from citadel.api import auth, routes
from citadel.services.errors import LibraryError

logging.basicConfig(level=settings.log_level,
                    format="%(asctime)s %(levelname)s %(name)s - %(message)s")
logger = logging.getLogger("citadel")

Base.metadata.create_all(bind=engine)
app = FastAPI(title=settings.app_name)
app.include_router(auth.router)
app.include_router(routes.router)


def _failure(status_code: int, message: str, kind: str) -> JSONResponse:
    return JSONResponse(status_code=status_code,
                        content={"success": False, "error": message, "kind": kind})


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.kind)
    return _failure(exc.status_code, exc.message, exc.kind)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{where}: {first.get('msg', 'invalid request')}" if where else "Invalid request body"
    return _failure(400, message, "ValidationError")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _failure(500, "Internal server error", "InternalError")


@app.get("/health")
def health():
    return {"status": "ok"}


def run():
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
