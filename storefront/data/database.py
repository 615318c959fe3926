# storefront/data/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from storefront.utils.settings import DATABASE_URL

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    #sqlite + testclient = wiele watkow na jednym polaczeniu
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    # import modeli zeby zarejestrowac tabele w Base.metadata
    import storefront.data.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
