"""
casedesk API

FastAPI application with:
- Case creation, listing and status transitions for all seven kinds
- User/admin assessments
- Evaluation vocabulary administration
- Per-user notification inbox
- Stale case scan and external channel self-test
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import get_settings
from ..errors import CaseDeskError, ValidationError
from ..logging_setup import configure_logging
from ..models import (
    AssessmentInput,
    CaseInput,
    CaseKind,
    CaseStatus,
    Criterion,
    ELEVATED_ROLES,
    NotificationType,
    OptionInput,
    Page,
    Perspective,
    Role,
)
from .container import Container

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CurrentUser(BaseModel):
    id: UUID
    roles: List[Role] = Field(default_factory=list)

    @property
    def is_elevated(self) -> bool:
        return any(role in ELEVATED_ROLES for role in self.roles)


class TransitionRequest(BaseModel):
    status: CaseStatus
    version: Optional[int] = None  # Version the client read; omit to skip the check


class CreateConfigRequest(BaseModel):
    perspective: Perspective
    criterion: Criterion
    options: List[OptionInput]


class UpdateConfigRequest(BaseModel):
    options: Optional[List[OptionInput]] = None
    is_active: Optional[bool] = None


def ok(data, **extra) -> dict:
    body = {"success": True, "data": jsonable_encoder(data)}
    body.update(extra)
    return body


def page_body(page: Page) -> dict:
    return ok(
        page.items,
        pagination={
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "totalPages": page.total_pages,
        }
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_container(request: Request) -> Container:
    return request.app.state.container


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None)
) -> CurrentUser:
    """
    Identity set by the authenticating gateway.

    X-User-Roles is a JSON array; unknown role names are ignored.
    """
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user id")

    roles: List[Role] = []
    if x_user_roles:
        try:
            raw_roles = json.loads(x_user_roles)
        except json.JSONDecodeError:
            raw_roles = []
        if isinstance(raw_roles, list):
            for value in raw_roles:
                try:
                    roles.append(Role(str(value).upper()))
                except ValueError:
                    continue
    return CurrentUser(id=user_id, roles=roles)


async def require_elevated(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_elevated:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


def _parse_perspective(value: str) -> Perspective:
    try:
        return Perspective(value.upper())
    except ValueError:
        raise ValidationError(f"Unknown perspective: {value}")


# =============================================================================
# APP SETUP
# =============================================================================

def create_app(container: Optional[Container] = None) -> FastAPI:
    """
    Build the application.

    Pass a prebuilt container to share repositories with a test; otherwise
    one is built from the environment settings.
    """
    container = container or Container.build(get_settings())
    settings = container.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        await container.startup()
        logger.info(f"{settings.app_name} {settings.app_version} started")
        try:
            yield
        finally:
            await container.shutdown()

    app = FastAPI(
        title="casedesk",
        description="Multi-type case workflow with assessments and notifications",
        version=settings.app_version,
        lifespan=lifespan
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(CaseDeskError)
    async def casedesk_error_handler(request: Request, exc: CaseDeskError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error(exc.status_code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return _error(status.HTTP_400_BAD_REQUEST, f"Invalid request: {details}")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def _register_routes(app: FastAPI) -> None:

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    @app.get("/health")
    async def health_check(container: Container = Depends(get_container)):
        return {
            "status": "healthy",
            "service": container.settings.app_name,
            "version": container.settings.app_version,
            "channel_configured": container.channel.is_configured,
            "stale_monitor_running": container.monitor.is_running,
        }

    # =========================================================================
    # CASE ENDPOINTS
    # =========================================================================

    @app.post("/cases/{kind}", status_code=status.HTTP_201_CREATED)
    async def create_case(
        kind: CaseKind,
        request: CaseInput,
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        """
        Create a case of the given kind.

        Starts RECEIVED. Requester defaults to the caller's employee record.
        """
        case = await container.lifecycle.create_case(kind, request, current_user_id=user.id)
        return ok(case)

    @app.get("/cases/{kind}")
    async def list_cases(
        kind: CaseKind,
        case_status: Optional[CaseStatus] = Query(None, alias="status"),
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        result = await container.lifecycle.list_cases(kind, case_status, page, limit)
        return page_body(result)

    @app.get("/cases/{kind}/{case_id}")
    async def get_case(
        kind: CaseKind,
        case_id: UUID,
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        return ok(await container.lifecycle.get_case(case_id, kind))

    @app.put("/cases/{kind}/{case_id}/status")
    async def transition_case(
        kind: CaseKind,
        case_id: UUID,
        request: TransitionRequest,
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        """
        Move a case along its state machine.

        COMPLETED stamps end_date. Terminal cases answer 409.
        """
        case = await container.lifecycle.transition_status(
            case_id, kind, request.status, expected_version=request.version
        )
        return ok(case)

    @app.put("/cases/{kind}/{case_id}/assessment")
    async def record_assessment(
        kind: CaseKind,
        case_id: UUID,
        request: AssessmentInput,
        perspective: str = Query("user"),
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        resolved = _parse_perspective(perspective)
        if resolved == Perspective.ADMIN and not user.is_elevated:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin role required"
            )
        case = await container.lifecycle.record_assessment(case_id, kind, resolved, request)
        return ok(case)

    # =========================================================================
    # EVALUATION CONFIG ENDPOINTS
    # =========================================================================

    @app.get("/evaluation-configs")
    async def list_configs(
        perspective: Optional[str] = Query(None),
        criterion: Optional[Criterion] = Query(None),
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        resolved = _parse_perspective(perspective) if perspective else None
        return ok(await container.catalog.list_configs(resolved, criterion))

    @app.post("/evaluation-configs/seed", status_code=status.HTTP_201_CREATED)
    async def seed_configs(
        user: CurrentUser = Depends(require_elevated),
        container: Container = Depends(get_container)
    ):
        """Install the built-in vocabularies. 409 if any config exists."""
        return ok(await container.catalog.seed_defaults())

    @app.get("/evaluation-configs/{config_id}")
    async def get_config(
        config_id: UUID,
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        return ok(await container.catalog.get_config(config_id))

    @app.post("/evaluation-configs", status_code=status.HTTP_201_CREATED)
    async def create_config(
        request: CreateConfigRequest,
        user: CurrentUser = Depends(require_elevated),
        container: Container = Depends(get_container)
    ):
        config = await container.catalog.create_config(
            request.perspective, request.criterion, request.options
        )
        return ok(config)

    @app.put("/evaluation-configs/{config_id}")
    async def update_config(
        config_id: UUID,
        request: UpdateConfigRequest,
        user: CurrentUser = Depends(require_elevated),
        container: Container = Depends(get_container)
    ):
        """Replace the option list and/or toggle the config."""
        config = await container.catalog.update_config(
            config_id, options=request.options, is_active=request.is_active
        )
        return ok(config)

    @app.delete("/evaluation-configs/{config_id}")
    async def delete_config(
        config_id: UUID,
        user: CurrentUser = Depends(require_elevated),
        container: Container = Depends(get_container)
    ):
        # Soft delete: recorded scores keep referring to the old points
        return ok(await container.catalog.deactivate_config(config_id))

    # =========================================================================
    # NOTIFICATION ENDPOINTS
    # =========================================================================

    @app.get("/notifications")
    async def list_notifications(
        is_read: Optional[bool] = Query(None, alias="isRead"),
        type: Optional[NotificationType] = Query(None),
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        result = await container.inbox.list_for(
            user.id, page=page, limit=limit, is_read=is_read, type=type
        )
        return page_body(result)

    @app.get("/notifications/unread-count")
    async def unread_count(
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        return ok({"count": await container.inbox.unread_count(user.id)})

    # Declared before /notifications/{notification_id} so the literal path wins
    @app.patch("/notifications/mark-all-read")
    async def mark_all_read(
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        return ok({"updated": await container.inbox.mark_all_read(user.id)})

    @app.patch("/notifications/{notification_id}")
    async def mark_read(
        notification_id: UUID,
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        return ok(await container.inbox.mark_read(user.id, notification_id))

    @app.delete("/notifications/{notification_id}")
    async def delete_notification(
        notification_id: UUID,
        user: CurrentUser = Depends(get_current_user),
        container: Container = Depends(get_container)
    ):
        await container.inbox.delete(user.id, notification_id)
        return ok({"id": notification_id})

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    @app.post("/admin/check-stale")
    async def check_stale(
        user: CurrentUser = Depends(require_elevated),
        container: Container = Depends(get_container)
    ):
        """Run one stale case scan now."""
        sent = await container.monitor.run_once()
        return ok({"escalations": sent})

    @app.post("/channel/test")
    async def test_channel(
        user: CurrentUser = Depends(require_elevated),
        container: Container = Depends(get_container)
    ):
        delivered = await container.channel.check_configuration()
        return ok({
            "configured": container.channel.is_configured,
            "delivered": delivered,
        })


# =============================================================================
# RUN
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "casedesk.api.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower()
    )
