# app/core/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlmodel import SQLModel
from app.core.config import settings

# Sync engine
sync_url = settings.DATABASE_URL.replace("+asyncpg", "")
connect_args = {"check_same_thread": False} if sync_url.startswith("sqlite") else {}
engine   = create_engine(sync_url, echo=False, connect_args=connect_args)

# Sync sessionmaker
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

# Dependency
def get_session() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Init DB (e.g. w startup)
def init_db():
    # Register every table model on the metadata before creating
    import app.auth.models  # noqa: F401
    import app.messages.models  # noqa: F401
    import app.announcements.models  # noqa: F401

    SQLModel.metadata.create_all(bind=engine)
