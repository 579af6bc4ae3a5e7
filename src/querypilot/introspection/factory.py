from typing import Callable, Dict, Optional

from sqlalchemy.engine import Engine

from querypilot.common.logger import get_logger
from .base import SchemaIntrospector
from .mysql import MySQLIntrospector
from .postgres import PostgresIntrospector
from .sqlite import SQLiteIntrospector

logger = get_logger("introspection.factory")

# SQLAlchemy dialect names and common aliases -> canonical engine type.
ENGINE_ALIASES: Dict[str, str] = {
    "postgres": "postgres",
    "postgresql": "postgres",
    "mysql": "mysql",
    "mariadb": "mariadb",
    "sqlite": "sqlite",
}

_BUILDERS: Dict[str, Callable[[Engine, Optional[str]], SchemaIntrospector]] = {
    "postgres": lambda engine, namespace: PostgresIntrospector(engine, schema_namespace=namespace or "public"),
    "mysql": lambda engine, namespace: MySQLIntrospector(engine, schema_namespace=namespace, engine_type="mysql"),
    "mariadb": lambda engine, namespace: MySQLIntrospector(engine, schema_namespace=namespace, engine_type="mariadb"),
    "sqlite": lambda engine, namespace: SQLiteIntrospector(engine),
}


def resolve_engine_type(name: str) -> str:
    """Canonicalizes an engine or SQLAlchemy dialect name.

    Raises:
        ValueError: If the engine is not supported.
    """
    try:
        return ENGINE_ALIASES[name.lower()]
    except KeyError:
        raise ValueError(f"Unsupported database engine: {name}") from None


def build_introspector(
    engine: Engine,
    engine_type: Optional[str] = None,
    schema_namespace: Optional[str] = None,
) -> SchemaIntrospector:
    """Returns the catalog introspector for the engine's dialect.

    Args:
        engine: The SQLAlchemy engine to introspect.
        engine_type: Override for the engine type; defaults to the engine's dialect name.
        schema_namespace: Catalog schema to read (Postgres schema, MySQL database).

    Raises:
        ValueError: If the engine type is not supported.
    """
    resolved = resolve_engine_type(engine_type or engine.dialect.name)
    logger.info(f"Using {resolved} catalog introspector.")
    return _BUILDERS[resolved](engine, schema_namespace)
