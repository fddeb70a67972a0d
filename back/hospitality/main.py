import logging
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session

from . import models, security
from .db import check_db_connection, create_db_and_tables, engine, get_session
from .errors import DomainError, InternalError
from .inventory_routes import router as inventory_router
from .order_routes import router as order_router
from .roles_routes import router as roles_router
from .room_routes import router as room_router
from .seeds.roles import assign_admin_role_to_existing_users, seed_roles
from .services_routes import router as services_router
from .settings import settings
from .transfer_routes import router as transfer_router
from .users_routes import router as users_router, user_response

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Hospitality API",
    description="Orders, department inventory, transfers and room operations",
    version="1.0.0",
)

# Parse CORS origins from environment (comma-separated)
cors_origins_list = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(order_router, tags=["Orders"])
app.include_router(inventory_router, prefix="/inventory", tags=["Inventory"])
app.include_router(services_router, tags=["Services"])
app.include_router(transfer_router, tags=["Transfers"])
app.include_router(room_router, tags=["Rooms"])
app.include_router(roles_router, tags=["Roles"])
app.include_router(users_router, tags=["Users"])


# ============ ERROR HANDLING ============

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        # Keep the code, hide the detail
        content = {"success": False, "code": exc.code, "message": "Internal server error"}
    else:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        content = exc.to_dict()
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "code": "VALIDATION_ERROR", "message": details},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=InternalError("Internal server error").to_dict())


# ============ LIFECYCLE ============

@app.on_event("startup")
def on_startup() -> None:
    logger.info("Starting application...")
    create_db_and_tables()
    with Session(engine) as session:
        seed_roles(session)
        assign_admin_role_to_existing_users(session)
    logger.info("Application started")


@app.get("/health")
def health() -> dict:
    db_ok = check_db_connection()
    return {"status": "ok" if db_ok else "degraded", "database": db_ok}


# ============ AUTH ============

@app.post("/token")
def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: Session = Depends(get_session)
) -> JSONResponse:
    user = security.authenticate_user(session, form_data.username, form_data.password)
    if not user:
        logger.warning(f"Failed login for {form_data.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = security.create_access_token(
        data={"sub": user.email, "token_version": user.token_version},
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )

    response = JSONResponse(content={"access_token": access_token, "token_type": "bearer"})
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        samesite="lax",
        path="/",
        max_age=settings.access_token_expire_minutes * 60,
    )
    return response


@app.get("/users/me", response_model=models.UserReadWithPermissions)
def read_users_me(
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session),
):
    return user_response(session, current_user)
