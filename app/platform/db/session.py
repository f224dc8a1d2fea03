from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.platform.config import settings

if settings.DATABASE_URL.startswith("sqlite"):
    # One connection per session
    _engine_options = {"poolclass": NullPool}
else:
    _engine_options = {
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": 20,
        "max_overflow": 30,  # (burst capacity)
        "pool_timeout": 30,
    }

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True, **_engine_options)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, autocommit=False)


async def get_db():
    async with SessionLocal() as session:
        yield session
