import re
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app_config import settings
from app_errors import ContactError, ValidationError
from app_logging import get_logger, setup_logging
from db_setup import init_db
from db_models import IdentifyRequest, FinalResponse, HierarchyBody, HierarchyResponse
from identity_resolver import get_contact_hierarchy, resolve_identity

logger = get_logger(__name__)

# ids are SQLite INTEGER keys
CONTACT_ID_PATTERN = re.compile(r"[0-9]+")
MAX_CONTACT_ID = 2 ** 63 - 1


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info("Contact store ready at %s", settings.DB_NAME)
    yield


async def contact_error_handler(request: Request, exc: ContactError) -> JSONResponse:
    if exc.status_code < 500:
        logger.warning(
            f"Request rejected: {exc.message}",
            extra={"status_code": exc.status_code, "path": request.url.path},
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    logger.error(
        f"{type(exc).__name__}: {exc.message}",
        exc_info=exc,
        extra={"path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content={"error": "Internal server error"})


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Malformed request body", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Request body must be an object with optional email and phoneNumber strings"},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        f"Unhandled exception: {exc}",
        extra={"path": request.url.path, "exception_type": type(exc).__name__},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


router = APIRouter()


@router.post("/identifyContact", response_model=FinalResponse)
def identify(request: IdentifyRequest):
    contact = resolve_identity(request.email, request.phoneNumber)
    return FinalResponse(contact=contact)


@router.get("/contactHierarchy/{contact_id}", response_model=HierarchyResponse)
def contact_hierarchy(contact_id: str):
    if not CONTACT_ID_PATTERN.fullmatch(contact_id) or not 1 <= int(contact_id) <= MAX_CONTACT_ID:
        raise ValidationError("Valid contact ID is required")

    hierarchy = get_contact_hierarchy(int(contact_id))
    return HierarchyResponse(
        hierarchy=HierarchyBody(
            primary=hierarchy.primary,
            secondary=hierarchy.secondary,
            totalContacts=len(hierarchy.all),
        )
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )

    @app.get("/")
    async def root():
        return {
            "message": "Bitespeed API is up",
            "status": "Running",
            "endpoints": {
                "identify": f"{settings.API_PREFIX}/identifyContact",
                "hierarchy": f"{settings.API_PREFIX}/contactHierarchy/{{id}}",
            },
        }

    app.include_router(router, prefix=settings.API_PREFIX)
    # older clients post to /identify
    app.add_api_route("/identify", identify, methods=["POST"], response_model=FinalResponse)

    app.add_exception_handler(ContactError, contact_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
