import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from identity.config import settings
from identity.database import init_db
from identity.errors import ErrorCode
from identity.routers import accounts, auth, health
from identity.services.email_tokens import email_token_service
from identity.services.otp import otp_service

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Identity Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api")
app.include_router(auth.router, prefix="/api")
app.include_router(accounts.router, prefix="/api")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        errors.append({"field": ".".join(location), "message": error.get("msg", "")})
    LOGGER.info("Validation error path=%s errors=%s", request.url.path, errors)
    first_field = errors[0]["field"] if errors else None
    detail = {
        "code": ErrorCode.VALIDATION_ERROR.value,
        "message": "Request validation failed",
        "errors": errors,
    }
    if first_field:
        detail["field"] = first_field
    return JSONResponse(status_code=400, content={"detail": detail})


@app.on_event("startup")
def startup() -> None:
    init_db()
    tokens = email_token_service.purge_expired()
    codes = otp_service.purge_expired()
    LOGGER.info("Purged expired records email_tokens=%s otps=%s", tokens, codes)


@app.get("/")
def root():
    return {"status": "Identity service running"}
