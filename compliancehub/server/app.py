"""
FastAPI application for the compliancehub server.
"""

# mypy: disable-error-code="arg-type, var-annotated, misc, union-attr, attr-defined"

import hashlib
import hmac
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..conditions import active_fields
from ..exceptions import ComplianceError, FieldError, ValidationError
from ..files import FileReferenceResolver, LocalUploadStorage, UrlSigner
from ..models import ComplianceType
from ..schema import SchemaRegistry, default_registry
from ..validation import FormValidator, raise_for_errors
from .config import ServerConfig
from .database import Database, get_database, utcnow

logger = logging.getLogger("compliancehub.server.app")

AUTH_FAILED_DETAIL = "Authentication credentials were not provided or are invalid."


class TokenRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    id_token: str
    expires_in: int


class UploadUrlRequest(BaseModel):
    file_names: List[str]


class UploadTicketResponse(BaseModel):
    file_name: str
    object_key: str
    pre_signed_url: str
    expires_at: datetime


class UploadReceipt(BaseModel):
    object_key: str
    original_name: str
    size: Optional[int]
    uploaded_at: Optional[datetime]


class FieldEvaluateRequest(BaseModel):
    country: str
    form_type: str
    host_countries: List[str] = Field(default_factory=list)
    fields: Dict[str, Any] = Field(default_factory=dict)


class ApplicationCreate(BaseModel):
    home_country: str
    host_countries: List[str]
    compliance_type: str
    start_date: date
    expiry_date: date
    fields: Dict[str, Any] = Field(default_factory=dict)
    uploaded_files: List[str] = Field(default_factory=list)


class ApplicationResponse(BaseModel):
    id: str
    home_country: str
    host_countries: List[str]
    compliance_type: str
    status: str
    start_date: date
    expiry_date: date
    fields: Dict[str, Any]
    uploaded_files: List[str]
    created_at: datetime
    days_to_expiry: int

    class Config:
        from_attributes = True


class ApplicationPage(BaseModel):
    count: int
    next: Optional[str]
    previous: Optional[str]
    results: List[ApplicationResponse]


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _error_body(exc: ComplianceError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        body["errors"] = [e.to_dict() for e in exc.errors if isinstance(e, FieldError)]
    return body


def _request_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "header")]
        errors.append(
            {
                "field": ".".join(loc) or "body",
                "code": err.get("type", "invalid"),
                "message": err.get("msg", "Invalid value"),
            }
        )
    return errors


def create_app(config: Optional[ServerConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = ServerConfig.from_env()

    logging.getLogger("compliancehub").setLevel(config.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = get_database(config.database_url)
        registry = (
            SchemaRegistry.from_directory(config.schema_dir)
            if config.schema_dir
            else default_registry()
        )
        app.state.db = db
        app.state.config = config
        app.state.registry = registry
        app.state.resolver = FileReferenceResolver(
            db,
            LocalUploadStorage(config.upload_dir),
            UrlSigner(config.signing_secret, config.public_base_url),
            ttl_seconds=config.upload_url_ttl_seconds,
        )
        yield

    app = FastAPI(
        title="compliancehub",
        description="Dynamic compliance forms, validation and application filing",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ComplianceError)
    async def compliance_error_handler(request: Request, exc: ComplianceError):
        return JSONResponse(status_code=exc.status_code or 500, content=_error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": "Validation failed", "errors": _request_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    def get_db() -> Database:
        return app.state.db

    def get_registry() -> SchemaRegistry:
        return app.state.registry

    def get_resolver() -> FileReferenceResolver:
        return app.state.resolver

    def get_current_user(
        authorization: str = Header(None), db: Database = Depends(get_db)
    ) -> str:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise HTTPException(status_code=401, detail=AUTH_FAILED_DETAIL)

        session = db.get_session()
        try:
            record = db.get_token(session, _hash_token(token.strip()))
            if record is None or record.kind != "id" or record.expires_at <= utcnow():
                raise HTTPException(status_code=401, detail=AUTH_FAILED_DETAIL)
            return record.email
        finally:
            session.close()

    def get_tenant(version: str = Header(None)) -> str:
        if not version:
            raise HTTPException(status_code=400, detail="Version header required")
        if version not in app.state.config.tenants:
            raise HTTPException(
                status_code=403, detail="You do not have access to this tenant"
            )
        return version

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/users/token/", response_model=TokenResponse)
    async def obtain_token(credentials: TokenRequest, db: Database = Depends(get_db)):
        expected = app.state.config.users.get(credentials.email)
        if expected is None or not hmac.compare_digest(
            expected.encode(), credentials.password.encode()
        ):
            logger.warning(f"Failed login for {credentials.email}")
            raise HTTPException(status_code=401, detail=AUTH_FAILED_DETAIL)

        ttl = app.state.config.token_ttl_seconds
        now = utcnow()
        tokens = {}
        session = db.get_session()
        try:
            for kind, lifetime in (("access", ttl), ("refresh", ttl * 24), ("id", ttl)):
                value = secrets.token_urlsafe(32)
                db.create_token(
                    session,
                    token_hash=_hash_token(value),
                    kind=kind,
                    email=credentials.email,
                    issued_at=now,
                    expires_at=now + timedelta(seconds=lifetime),
                )
                tokens[kind] = value
        finally:
            session.close()

        return TokenResponse(
            access_token=tokens["access"],
            refresh_token=tokens["refresh"],
            id_token=tokens["id"],
            expires_in=ttl,
        )

    @app.get("/api/compliance/forms")
    async def list_forms(
        registry: SchemaRegistry = Depends(get_registry),
        user: str = Depends(get_current_user),
        tenant: str = Depends(get_tenant),
    ):
        return {"forms": registry.available()}

    @app.get("/api/compliance/fields")
    async def get_fields(
        country: str = Query(...),
        form_type: str = Query(...),
        host_country: Optional[str] = Query(None),
        registry: SchemaRegistry = Depends(get_registry),
        user: str = Depends(get_current_user),
        tenant: str = Depends(get_tenant),
    ):
        schema = registry.get(country, form_type, host_country)
        return schema.to_dict()

    @app.post("/api/compliance/fields/evaluate")
    async def evaluate_fields(
        request: FieldEvaluateRequest,
        registry: SchemaRegistry = Depends(get_registry),
        user: str = Depends(get_current_user),
        tenant: str = Depends(get_tenant),
    ):
        host_countries = [c.upper() for c in request.host_countries]
        host = host_countries[0] if len(host_countries) == 1 else None
        schema = registry.get(request.country, request.form_type, host)
        active = active_fields(schema.fields, request.fields, host_countries)
        return {"active_fields": [f.to_dict() for f in active]}

    @app.post(
        "/api/compliance/document_upload_url/",
        response_model=List[UploadTicketResponse],
    )
    async def issue_upload_urls(
        request: UploadUrlRequest,
        db: Database = Depends(get_db),
        resolver: FileReferenceResolver = Depends(get_resolver),
        user: str = Depends(get_current_user),
        tenant: str = Depends(get_tenant),
    ):
        session = db.get_session()
        try:
            tickets = resolver.issue(session, request.file_names, tenant)
            return [UploadTicketResponse(**t.to_dict()) for t in tickets]
        finally:
            session.close()

    @app.put("/api/compliance/uploads/{object_key}", response_model=UploadReceipt)
    async def receive_upload(
        object_key: str,
        request: Request,
        expires: int = Query(...),
        signature: str = Query(...),
        db: Database = Depends(get_db),
        resolver: FileReferenceResolver = Depends(get_resolver),
    ):
        data = await request.body()
        session = db.get_session()
        try:
            reference = resolver.receive(
                session,
                object_key,
                expires,
                signature,
                data,
                content_type=request.headers.get("content-type"),
            )
            return UploadReceipt(
                object_key=reference.object_key,
                original_name=reference.original_name,
                size=reference.size,
                uploaded_at=reference.uploaded_at,
            )
        finally:
            session.close()

    @app.post(
        "/api/compliance/requests/create",
        response_model=ApplicationResponse,
        status_code=201,
    )
    async def create_application(
        application: ApplicationCreate,
        db: Database = Depends(get_db),
        registry: SchemaRegistry = Depends(get_registry),
        resolver: FileReferenceResolver = Depends(get_resolver),
        user: str = Depends(get_current_user),
        tenant: str = Depends(get_tenant),
    ):
        home_country = application.home_country.strip().upper()
        host_countries = [c.strip().upper() for c in application.host_countries]

        session = db.get_session()
        try:
            validator = FormValidator(
                file_exists=lambda key: resolver.consume(session, key, tenant)
            )
            errors = validator.check_application(
                home_country,
                host_countries,
                application.start_date,
                application.expiry_date,
                application.uploaded_files,
            )
            try:
                compliance_type = ComplianceType(application.compliance_type.strip().upper())
            except ValueError:
                allowed = ", ".join(t.value for t in ComplianceType)
                errors.append(
                    FieldError(
                        "compliance_type",
                        "invalid_choice",
                        f"compliance_type must be one of: {allowed}",
                    )
                )
            raise_for_errors(errors)

            host = host_countries[0] if len(host_countries) == 1 else None
            schema = registry.get(home_country, compliance_type, host)
            active = active_fields(schema.fields, application.fields, host_countries)
            validator.validate(active, application.fields)

            created = db.create_application(
                session,
                tenant=tenant,
                created_by=user,
                home_country=home_country,
                host_countries=host_countries,
                compliance_type=compliance_type.value,
                start_date=application.start_date,
                expiry_date=application.expiry_date,
                fields=application.fields,
                uploaded_files=application.uploaded_files,
            )
            return ApplicationResponse.model_validate(created)
        finally:
            session.close()

    @app.get("/api/compliance/compliance-requests/", response_model=ApplicationPage)
    async def list_applications(
        request: Request,
        status: Optional[str] = Query(None),
        compliance_type: Optional[str] = Query(None),
        home_country: Optional[str] = Query(None),
        host_country: Optional[str] = Query(None),
        page: int = Query(1, ge=1),
        page_size: Optional[int] = Query(None, ge=1),
        db: Database = Depends(get_db),
        user: str = Depends(get_current_user),
        tenant: str = Depends(get_tenant),
    ):
        cfg = app.state.config
        size = min(page_size or cfg.default_page_size, cfg.max_page_size)

        session = db.get_session()
        try:
            items, total = db.list_applications(
                session,
                tenant,
                status=status.upper() if status else None,
                compliance_type=compliance_type.upper() if compliance_type else None,
                home_country=home_country,
                host_country=host_country,
                limit=size,
                offset=(page - 1) * size,
            )
            next_url = None
            if page * size < total:
                next_url = str(request.url.include_query_params(page=page + 1))
            previous_url = None
            if page > 1:
                previous_url = str(request.url.include_query_params(page=page - 1))
            return ApplicationPage(
                count=total,
                next=next_url,
                previous=previous_url,
                results=[ApplicationResponse.model_validate(a) for a in items],
            )
        finally:
            session.close()

    @app.get(
        "/api/compliance/compliance-requests/{application_id}",
        response_model=ApplicationResponse,
    )
    async def get_application(
        application_id: str,
        db: Database = Depends(get_db),
        user: str = Depends(get_current_user),
        tenant: str = Depends(get_tenant),
    ):
        session = db.get_session()
        try:
            application = db.get_application(session, application_id, tenant=tenant)
            if not application:
                raise HTTPException(status_code=404, detail="Application not found")
            return ApplicationResponse.model_validate(application)
        finally:
            session.close()

    return app


class ComplianceHubServer:
    """High-level server class for running compliancehub."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8000,
        database_url: Optional[str] = None,
        **kwargs,
    ):
        self.config = ServerConfig(
            host=host,
            port=port,
            database_url=database_url,
            **kwargs,
        )
        self.app = create_app(self.config)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )

    async def run_async(self):
        """Run the server asynchronously."""
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        server = uvicorn.Server(config)
        await server.serve()
