"""
Storage backends for the MFA engine.

This package provides:
- mfa_db: SQLAlchemy (PostgreSQL/SQLite) storage for secrets, backup codes,
  challenges and sessions
- memory_store: thread-safe in-process stores
"""
