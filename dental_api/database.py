from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from dental_api.config import DATABASE_URL

# check_same_thread is only meaningful for SQLite; the threaded server shares
# connections across worker threads.
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


# Dependency for DB session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
