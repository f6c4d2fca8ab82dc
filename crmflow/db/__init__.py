"""crmflow.db: async SQLAlchemy models, session factory, and repository."""
