"""
Database layer for compliancehub server using SQLAlchemy.
Supports SQLite (default) and PostgreSQL.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    create_engine,
    desc,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from ..exceptions import InvalidTransitionError, NotFoundError
from ..models import ApplicationStatus

logger = logging.getLogger("compliancehub.server.database")

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ApplicationModel(Base):
    __tablename__ = "applications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    tenant = Column(String(100), nullable=False)
    created_by = Column(String(255), nullable=False)
    home_country = Column(String(2), nullable=False)
    host_countries = Column(JSON, default=list)
    # ",GB,AT," so a single host country can be matched with LIKE on any backend
    host_country_codes = Column(String(512), default=",")
    compliance_type = Column(String(20), nullable=False)
    status = Column(String(20), default=ApplicationStatus.FILED.value)
    start_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=False)
    fields = Column(JSON, default=dict)
    uploaded_files = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    events = relationship(
        "ApplicationEventModel", back_populates="application", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_applications_tenant_created", "tenant", "created_at"),
        Index("idx_applications_status", "status"),
    )

    @property
    def days_to_expiry(self) -> int:
        return (self.expiry_date - utcnow().date()).days


class ApplicationEventModel(Base):
    __tablename__ = "application_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=False)
    event_type = Column(String(100), nullable=False)
    actor = Column(String(255), nullable=False)
    payload = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)

    application = relationship("ApplicationModel", back_populates="events")

    __table_args__ = (Index("idx_application_events_application_id", "application_id"),)


class FileReferenceModel(Base):
    __tablename__ = "file_references"

    object_key = Column(String(32), primary_key=True)
    tenant = Column(String(100), nullable=False)
    original_name = Column(String(255), nullable=False)
    issued_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    uploaded_at = Column(DateTime, nullable=True)
    size = Column(Integer, nullable=True)
    content_type = Column(String(100), nullable=True)


class AccessTokenModel(Base):
    __tablename__ = "access_tokens"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    token_hash = Column(String(64), nullable=False, unique=True)
    kind = Column(String(20), nullable=False)
    email = Column(String(255), nullable=False)
    issued_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (Index("idx_access_tokens_hash", "token_hash"),)


class Database:
    """Database interface for compliancehub server."""

    def __init__(self, database_url: str):
        self.database_url = database_url

        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool if database_url.startswith("sqlite") else None,
        )
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # ==================== Applications ====================

    def create_application(self, session: Session, **kwargs) -> ApplicationModel:
        host_countries = list(kwargs.get("host_countries") or [])
        kwargs["host_countries"] = host_countries
        kwargs["host_country_codes"] = "," + "".join(f"{c}," for c in host_countries)
        kwargs["status"] = ApplicationStatus.FILED.value

        application = ApplicationModel(**kwargs)
        session.add(application)
        session.flush()
        session.add(
            ApplicationEventModel(
                application_id=application.id,
                event_type="application_filed",
                actor=application.created_by,
                payload={"compliance_type": application.compliance_type},
            )
        )
        session.commit()
        session.refresh(application)
        logger.info(
            f"Filed application {application.id} ({application.compliance_type}) "
            f"for tenant {application.tenant}"
        )
        return application

    def get_application(
        self, session: Session, application_id: str, tenant: Optional[str] = None
    ) -> Optional[ApplicationModel]:
        query = session.query(ApplicationModel).filter(ApplicationModel.id == application_id)
        if tenant is not None:
            query = query.filter(ApplicationModel.tenant == tenant)
        return query.first()

    def list_applications(
        self,
        session: Session,
        tenant: str,
        status: Optional[str] = None,
        compliance_type: Optional[str] = None,
        home_country: Optional[str] = None,
        host_country: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[ApplicationModel], int]:
        """Return one page of a tenant's applications, newest first, and the total count."""
        query = session.query(ApplicationModel).filter(ApplicationModel.tenant == tenant)
        if status:
            query = query.filter(ApplicationModel.status == status)
        if compliance_type:
            query = query.filter(ApplicationModel.compliance_type == compliance_type)
        if home_country:
            query = query.filter(ApplicationModel.home_country == home_country.upper())
        if host_country:
            query = query.filter(
                ApplicationModel.host_country_codes.contains(f",{host_country.upper()},")
            )

        total = query.count()
        items = (
            query.order_by(desc(ApplicationModel.created_at), desc(ApplicationModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def record_status(
        self,
        session: Session,
        application_id: str,
        status: str,
        actor: str,
        reason: str = "",
    ) -> ApplicationModel:
        """Record a case-manager decision on a filed application."""
        application = self.get_application(session, application_id)
        if not application:
            raise NotFoundError(f"Application {application_id} not found")

        current = ApplicationStatus(application.status)
        target = ApplicationStatus(status)
        if not current.can_transition_to(target):
            raise InvalidTransitionError(current.value, target.value)

        application.status = target.value
        application.updated_at = utcnow()
        session.add(
            ApplicationEventModel(
                application_id=application.id,
                event_type="status_changed",
                actor=actor,
                payload={"from": current.value, "to": target.value, "reason": reason},
            )
        )
        session.commit()
        session.refresh(application)
        logger.info(f"Application {application.id} moved {current.value} -> {target.value}")
        return application

    def get_events(
        self, session: Session, application_id: str, limit: int = 100, offset: int = 0
    ) -> List[ApplicationEventModel]:
        return (
            session.query(ApplicationEventModel)
            .filter(ApplicationEventModel.application_id == application_id)
            .order_by(ApplicationEventModel.created_at)
            .offset(offset)
            .limit(limit)
            .all()
        )

    # ==================== File references ====================

    def create_file_reference(self, session: Session, **kwargs) -> FileReferenceModel:
        reference = FileReferenceModel(**kwargs)
        session.add(reference)
        session.commit()
        session.refresh(reference)
        return reference

    def get_file_reference(
        self, session: Session, object_key: str
    ) -> Optional[FileReferenceModel]:
        return (
            session.query(FileReferenceModel)
            .filter(FileReferenceModel.object_key == object_key)
            .first()
        )

    def mark_uploaded(
        self,
        session: Session,
        object_key: str,
        size: int,
        content_type: Optional[str],
        uploaded_at: datetime,
    ) -> Optional[FileReferenceModel]:
        reference = self.get_file_reference(session, object_key)
        if not reference or reference.uploaded_at is not None:
            return None

        reference.uploaded_at = uploaded_at
        reference.size = size
        reference.content_type = content_type
        session.commit()
        session.refresh(reference)
        return reference

    # ==================== Tokens ====================

    def create_token(self, session: Session, **kwargs) -> AccessTokenModel:
        token = AccessTokenModel(**kwargs)
        session.add(token)
        session.commit()
        session.refresh(token)
        return token

    def get_token(self, session: Session, token_hash: str) -> Optional[AccessTokenModel]:
        return (
            session.query(AccessTokenModel)
            .filter(AccessTokenModel.token_hash == token_hash)
            .first()
        )


_database: Optional[Database] = None


def get_database(database_url: str = "sqlite:///./compliancehub.db") -> Database:
    """Get or create the database instance."""
    global _database
    if _database is None:
        _database = Database(database_url)
        _database.create_tables()
    return _database
