"""Database-agnostic type definitions for SQLAlchemy models.

These work with both SQLite (local/tests) and PostgreSQL.
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# JSON instead of JSONB so SQLite can create the tables
JSONType = JSON

UUIDType = PG_UUID
