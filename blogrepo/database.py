from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from blogrepo.config import settings
from blogrepo.middleware import install_query_counter


def install_sqlite_pragmas(engine) -> None:
    """
    Turn on foreign-key enforcement for SQLite connections.

    SQLite ships with foreign keys disabled per connection, so the
    ``ON DELETE RESTRICT`` rules on posts would otherwise be ignored.
    No-op for every other dialect.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Module-level engine variable allows tests to override with a test engine.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

install_query_counter(engine)
install_sqlite_pragmas(engine)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    """
    Yield one scoped session per request.

    The repository commits its own writes; the commit here only flushes
    whatever a read path left pending.  ``async with`` closes the session
    on every exit path, cancellation included.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
