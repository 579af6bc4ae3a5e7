from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from querypilot.common.resilience import reset_breakers
from querypilot.introspection import SQLiteIntrospector
from querypilot.schema.metadata import SchemaMetadataService

CRM_DDL = [
    """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        email VARCHAR(255) UNIQUE,
        department VARCHAR(50),
        "tenantId" VARCHAR(36) NOT NULL
    )
    """,
    """
    CREATE TABLE accounts (
        id INTEGER PRIMARY KEY,
        name VARCHAR(200) NOT NULL,
        industry VARCHAR(50),
        website TEXT,
        "annualRevenue" DECIMAL(15,2),
        "tenantId" VARCHAR(36) NOT NULL,
        "createdAt" DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE deals (
        id INTEGER PRIMARY KEY,
        name VARCHAR(200) NOT NULL,
        amount DECIMAL(12,2) DEFAULT 0,
        stage VARCHAR(50) DEFAULT 'Prospecting',
        probability INTEGER,
        "closeDate" DATE,
        "ownerId" INTEGER REFERENCES users(id),
        "accountId" INTEGER REFERENCES accounts(id) ON DELETE CASCADE,
        "tenantId" VARCHAR(36) NOT NULL,
        "isActive" BOOLEAN DEFAULT 1,
        notes TEXT
    )
    """,
    'CREATE INDEX idx_deals_stage ON deals(stage)',
]


@pytest.fixture(autouse=True)
def isolated_breakers():
    """Every test starts with closed introspection breakers."""
    reset_breakers()
    yield
    reset_breakers()


@pytest.fixture
def crm_engine():
    """In-memory SQLite database holding a small CRM schema."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        for statement in CRM_DDL:
            conn.exec_driver_sql(statement)
    yield engine
    engine.dispose()


@pytest.fixture
def metadata_service():
    """Metadata service over the bundled CRM catalog."""
    return SchemaMetadataService(tenant_column="tenantId")


@pytest.fixture
def raw_schema(crm_engine):
    return SQLiteIntrospector(crm_engine).get_schema()


@pytest.fixture
def crm_schema(raw_schema, metadata_service):
    """Introspected and enriched CRM schema."""
    return metadata_service.enrich(raw_schema)


@pytest.fixture
def fixed_now():
    return datetime(2024, 5, 15, 10, 30)
