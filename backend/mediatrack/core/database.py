from sqlalchemy.orm import sessionmaker
from sqlalchemy import create_engine
import asyncio
import logging

from mediatrack.core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url


def build_engine(url: str):
    """Create an engine; Postgres gets a pooled engine, SQLite (local/dev) the defaults."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    # pool_pre_ping: verify connections before using them
    # pool_recycle: recycle connections after N seconds to prevent stale connections
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True
    )


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

async def init_db():
    from mediatrack.models import Base, User
    loop = asyncio.get_running_loop()

    def _create_schema():
        try:
            # Unique indexes (dedup keys) are declared on the models and created here
            Base.metadata.create_all(bind=engine)
        except Exception as e:
            # Never fail startup due to migration errors
            logger.warning(f"Schema creation failed or partially applied: {e}", exc_info=True)

    await loop.run_in_executor(None, _create_schema)

    # Create default user if none exists (single-user mode)
    def _create_default_user():
        try:
            with SessionLocal() as db:
                if db.query(User).count() == 0:
                    db.add(User(email="default@mediatrack.local"))
                    db.commit()
        except Exception as e:
            logger.warning(f"Default user creation skipped: {e}")

    await loop.run_in_executor(None, _create_default_user)
