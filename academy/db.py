from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from academy.config import settings


def make_engine(url: str):
    # connect_args for sqlite to allow multithreading
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)
