from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from common.config import database_url


@lru_cache(maxsize=1)
def get_engine():
    return create_engine(database_url(), pool_pre_ping=True)


class Base(DeclarativeBase):
    pass


def get_db():
    db = sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)()
    try:
        yield db
    finally:
        db.close()
