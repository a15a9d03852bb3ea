"""Database-agnostic type definitions for SQLAlchemy models.

Tenant stores run on PostgreSQL in production and on SQLite in tests, so
tenant models use these instead of the postgresql dialect types.
"""
from sqlalchemy import JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Native UUID on PostgreSQL, CHAR(32) elsewhere
UUIDType = Uuid
