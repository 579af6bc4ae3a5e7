from .builder import DIALECT_MAP, SqlBuildError, SqlBuilder, SqlQuery, resolve_dialect

__all__ = ["DIALECT_MAP", "SqlBuildError", "SqlBuilder", "SqlQuery", "resolve_dialect"]
