# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine, session factory, and the ORM model behind the
# SQL document store.
#
# Key exports:
#   - get_session_factory: lazily built async_sessionmaker
#   - create_schema: create tables at startup (document_store_type="sql")
#   - Base, DocumentRecordRow: ORM model for document_records
# =============================================================================
