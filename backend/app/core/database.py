from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.settings import settings

SQLALCHEMY_DATABASE_URL = settings.database_url

connect_args: dict = {}
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    # Writers wait on the database lock instead of failing immediately.
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
