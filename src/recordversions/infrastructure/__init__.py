"""SQLAlchemy bindings for the versioning engine."""
