from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)

from daokit.config.settings import Settings, get_settings


def create_engine(settings: Settings | None = None, **engine_kwargs) -> AsyncEngine:
    """
    Create the AsyncEngine a Repository owns for its lifetime.

    The engine is internally pooled and safe to share between concurrent tasks;
    sessions are not, so the repository opens one per operation.
    """
    settings = settings or get_settings()
    options = {
        "echo": settings.SQLALCHEMY_ECHO,
        "pool_pre_ping": settings.DB_POOL_PRE_PING,
    }
    options.update(engine_kwargs)
    return create_async_engine(settings.DATABASE_URL, **options)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: records handed back to callers must stay readable
    # after the per-operation transaction has committed.
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
