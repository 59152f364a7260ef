"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
from contextlib import contextmanager

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict:
    """Pool settings for Postgres; a single shared connection for SQLite."""
    if url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database connection and run startup tasks.

    IMPORTANT: Schema is managed by Alembic migrations, NOT create_all().
    Run `alembic upgrade head` before first startup.

    Startup order:
    1. Run preflight check (validates DB connectivity)
    2. Verify schema exists (tables were created by Alembic)
    3. Bootstrap admin if ADMIN_BOOTSTRAP_* env vars set and no users exist
    4. Seed demo data ONLY if SEED_DEMO=true (never in production)
    """
    from sqlalchemy import inspect, text

    from app.db.preflight import run_db_preflight
    run_db_preflight()

    # Import models to register them (but don't create tables)
    from app.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    required_tables = ['users', 'profiles', 'contractors', 'doc_types']

    missing = [t for t in required_tables if t not in existing_tables]
    if missing:
        logger.warning(f"Database schema missing tables: {missing}. Run 'alembic upgrade head'.")
        if settings.DEBUG:
            logger.warning("DEBUG=true: Auto-creating tables (NOT for production!)")
            Base.metadata.create_all(bind=engine)
        else:
            logger.warning("Production mode: Waiting for migrations to be run...")
            return
    else:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")

    if 'alembic_version' in existing_tables:
        with engine.connect() as conn:
            version = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
            logger.info(f"Alembic migration version: {version}")
    else:
        logger.warning("alembic_version table not found - migrations may not have been run")

    bootstrap_admin()

    if settings.SEED_DEMO:
        from app.db.seed import seed_demo_data
        logger.info("SEED_DEMO=true: Seeding demo data...")
        seed_demo_data()


def bootstrap_admin():
    """
    Bootstrap initial admin user from environment variables.

    Only runs if ADMIN_BOOTSTRAP_EMAIL and ADMIN_BOOTSTRAP_PASSWORD are set
    and no users exist in the database yet.
    """
    from app.db.models import User
    from app.services.accounts import provision_admin

    email = settings.ADMIN_BOOTSTRAP_EMAIL
    password = settings.ADMIN_BOOTSTRAP_PASSWORD

    if not email or not password:
        logger.info("Admin bootstrap: ADMIN_BOOTSTRAP_EMAIL/PASSWORD not set. Skipping.")
        return

    if len(password) < 10:
        logger.warning("ADMIN_BOOTSTRAP_PASSWORD must be at least 10 characters. Skipping bootstrap.")
        return

    with get_db_context() as db:
        if db.query(User).first():
            logger.info("Admin bootstrap: users already exist. Skipping bootstrap.")
            return
        provision_admin(db, email, password, note="Bootstrap admin")

    logger.info(f"Bootstrap admin created: {email}")
