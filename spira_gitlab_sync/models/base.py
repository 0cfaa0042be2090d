"""Database base configuration"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from spira_gitlab_sync.config import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_artifact_mappings_unique_indexes(bind=None):
    """
    Best-effort schema hardening:
    Databases created before the table carried its unique indexes may lack them.

    At most one mapping per internal artifact, and at most one primary mapping per
    external key, for a given data-sync, artifact type and project.
    """
    bind = bind or engine
    with bind.begin() as conn:
        if bind.dialect.name == "sqlite":
            tables = {
                row[0]
                for row in conn.exec_driver_sql(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                ).fetchall()
            }
            if "artifact_mappings" not in tables:
                return

        stmts = [
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_artifact_mappings_internal "
            "ON artifact_mappings(data_sync_id, artifact_type, project_id, internal_id)",
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_artifact_mappings_primary_external "
            "ON artifact_mappings(data_sync_id, artifact_type, project_id, external_key) "
            "WHERE is_primary",
        ]
        for sql in stmts:
            try:
                conn.exec_driver_sql(sql)
            except Exception:
                # Some dialects may not support IF NOT EXISTS; try without it.
                try:
                    conn.exec_driver_sql(sql.replace(" IF NOT EXISTS", ""))
                except Exception:
                    # Best-effort only; do not block startup.
                    pass


def init_db(bind=None):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import spira_gitlab_sync.models  # noqa: F401  (import for side-effects)

    Base.metadata.create_all(bind=bind or engine)
    _ensure_artifact_mappings_unique_indexes(bind)
