from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def make_session_factory(database_url: str, **engine_kwargs) -> sessionmaker:
    """Create engine + session factory and make sure the relay tables exist."""
    engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)

    # Registers the tables on Base.metadata.
    from supportrelay import models  # noqa: F401

    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)
