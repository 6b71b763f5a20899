"""
Test configuration and shared fixtures for the scheduling engine test suite.

Runs against a temporary SQLite database by default, or against the
database named by TEST_DATABASE_URL (e.g. PostgreSQL). The schema is
built by running the Alembic migrations from base to head. Each test gets
a clean database state via automatic transaction rollback.
"""

import os

# Never reach for a configured production database from tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from alembic import command
from alembic.config import Config

from core.database import build_engine, drop_tables
from models import Procedure, ProcedureRequirement, Resource, ResourceAvailability, ResourceRole
from services import scheduling_events
from services.availability_service import AvailabilityService
from services.procedure_service import ProcedureService
from services.resource_service import ResourceService


CLINIC_ID = 1
OTHER_CLINIC_ID = 2

# 2030-01-07 is a Monday
MONDAY = datetime(2030, 1, 7)

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def use_explicit_sqlite_transactions(engine: Engine) -> None:
    """
    Let pysqlite run SAVEPOINTs inside a real transaction.

    pysqlite defers BEGIN until the first DML statement, which breaks the
    savepoint-per-test pattern; emit BEGIN ourselves instead.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):  # type: ignore
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):  # type: ignore
        conn.exec_driver_sql("BEGIN")


def reset_database(engine: Engine) -> None:
    """Drop every scheduling table and the Alembic version table."""
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE IF EXISTS alembic_version"))
    drop_tables(bind=engine)


def migrate_database(url: str) -> None:
    """Run all migrations from scratch (base -> head) against url."""
    alembic_cfg = Config(str(ALEMBIC_INI))
    # ConfigParser interpolation treats % specially
    alembic_cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    # Keep pytest's logging configuration
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory) -> Generator[Engine, None, None]:
    """
    Create a database engine for the test session.

    This engine is shared across all tests for performance.
    Uses NullPool to avoid connection pool issues with transactions.
    """
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite:///{tmp_path_factory.mktemp('db') / 'scheduling_test.db'}"
    engine = build_engine(url, poolclass=NullPool)
    if url.startswith("sqlite"):
        use_explicit_sqlite_transactions(engine)

    # Start fresh, then build the schema from migrations
    reset_database(engine)
    migrate_database(url)

    yield engine

    reset_database(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Provide a database session for a test with automatic rollback.

    The session joins an outer transaction through a savepoint, so service
    code can commit and roll back freely while every change is still undone
    when the test finishes. Session settings mirror SessionLocal.
    """
    connection = db_engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def published_events() -> Generator[List[scheduling_events.SchedulingEvent], None, None]:
    """Capture every scheduling event published during a test."""
    captured: List[scheduling_events.SchedulingEvent] = []
    scheduling_events.event_publisher.subscribe("*", captured.append)

    yield captured

    scheduling_events.event_publisher.unsubscribe("*", captured.append)


class CatalogFactory:
    """
    Builds catalog rows for one clinic through the services under test.

    Resource types are the clinic's system types, addressed by code.
    """

    def __init__(self, db: Session, clinic_id: int):
        self.db = db
        self.clinic_id = clinic_id
        self.types = {
            rt.code: rt for rt in ResourceService.ensure_system_resource_types(db, clinic_id)
        }

    def role(self, code: str, type_code: Optional[str] = None) -> ResourceRole:
        resource_type_id = self.types[type_code].id if type_code else None
        return ResourceService.create_role(
            self.db, self.clinic_id, code, code.replace("_", " ").title(), resource_type_id=resource_type_id
        )

    def resource(
        self,
        name: str,
        type_code: str = "people",
        roles: Optional[List[ResourceRole]] = None,
        **kwargs: Any,
    ) -> Resource:
        return ResourceService.create_resource(
            self.db,
            self.clinic_id,
            self.types[type_code].id,
            name,
            role_ids=[role.id for role in roles or []],
            **kwargs,
        )

    def procedure(self, code: str, duration_minutes: Optional[int] = 30, **kwargs: Any) -> Procedure:
        if kwargs.get("procedure_type") == "composite":
            duration_minutes = None
        return ProcedureService.create_procedure(
            self.db, self.clinic_id, code, code.replace("_", " ").title(),
            duration_minutes=duration_minutes, **kwargs,
        )

    def requirement(self, procedure: Procedure, role: ResourceRole, **kwargs: Any) -> ProcedureRequirement:
        return ProcedureService.add_requirement(self.db, self.clinic_id, procedure.id, role.id, **kwargs)

    def availability(
        self,
        resource: Resource,
        start: datetime,
        end: datetime,
        **kwargs: Any,
    ) -> ResourceAvailability:
        return AvailabilityService.create_availability(
            self.db, self.clinic_id, resource.id, start, end, **kwargs
        )


@pytest.fixture
def catalog(db_session) -> CatalogFactory:
    """Catalog factory for the main test clinic."""
    return CatalogFactory(db_session, CLINIC_ID)


@pytest.fixture
def other_catalog(db_session) -> CatalogFactory:
    """Catalog factory for a second clinic, for tenant isolation tests."""
    return CatalogFactory(db_session, OTHER_CLINIC_ID)


@pytest.fixture
def surgery_setup(catalog) -> Dict[str, Any]:
    """
    A 60 minute surgery needing one surgeon, one procedure room and one
    vial of botox, with two surgeons, two rooms and a stocked consumable.
    """
    surgeon = catalog.role("surgeon", "people")
    room = catalog.role("procedure_room", "place")
    vial = catalog.role("botox_vial", "consumable")

    dr_chen = catalog.resource("Dr. Chen", "people", [surgeon])
    dr_lin = catalog.resource("Dr. Lin", "people", [surgeon])
    room_1 = catalog.resource("Procedure Room 1", "place", [room])
    room_2 = catalog.resource("Procedure Room 2", "place", [room])
    botox = catalog.resource(
        "Botox 100U", "consumable", [vial], quantity_on_hand=5, quantity_threshold=2
    )

    surgery = catalog.procedure("surgery", 60)
    catalog.requirement(surgery, surgeon)
    catalog.requirement(surgery, room)
    catalog.requirement(surgery, vial)

    return {
        "roles": {"surgeon": surgeon, "room": room, "vial": vial},
        "dr_chen": dr_chen,
        "dr_lin": dr_lin,
        "room_1": room_1,
        "room_2": room_2,
        "botox": botox,
        "surgery": surgery,
    }


@pytest.fixture
def client(db_session):
    """API test client sharing the test's database session."""
    from fastapi.testclient import TestClient

    from core.database import get_db
    from main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)
