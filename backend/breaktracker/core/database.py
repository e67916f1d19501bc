import asyncio
from typing import Awaitable, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from breaktracker.core.config import settings
from breaktracker.core.exceptions import StoreUnavailable

T = TypeVar("T")

# SQLite benötigt check_same_thread=False
connect_args = {}
if "sqlite" in settings.DATABASE_URL:
    connect_args = {"check_same_thread": False}

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    connect_args=connect_args,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_tables():
    """Erstellt alle Tabellen (für lokale Entwicklung ohne Alembic)."""
    import breaktracker.models  # noqa – alle Models importieren
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def with_store_timeout(awaitable: Awaitable[T], timeout: float | None = None) -> T:
    """
    Führt eine Store-Operation mit oberer Zeitgrenze aus.

    Timeouts und Treiberfehler werden zu StoreUnavailable. IntegrityError geht
    unverändert durch, die Aufrufer übersetzen ihn in Domain-Fehler.
    """
    if timeout is None:
        timeout = settings.STORE_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreUnavailable(f"Store did not answer within {timeout:g}s") from e
    except IntegrityError:
        raise
    except SQLAlchemyError as e:
        raise StoreUnavailable(str(e)[:200]) from e


def dialect_insert(session: AsyncSession):
    """Liefert das dialektspezifische insert() mit on_conflict_do_nothing."""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StoreUnavailable(f"Conditional insert not supported on {name}")
    return insert
