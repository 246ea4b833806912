from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rentals_api.core.config import settings

engine = create_async_engine(settings.database_url, echo=settings.DEBUG)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
