from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from gradebook.config import DATABASE_URL, SQL_ECHO


# ---------------------------
# Engine
# ---------------------------
engine = create_async_engine(
    DATABASE_URL,
    echo=SQL_ECHO,  # set SQL_ECHO=true for SQL debug logs
    future=True
)

# ---------------------------
# Session Local
# ---------------------------
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False,
)

# ---------------------------
# Base model
# ---------------------------
Base = declarative_base()

# ---------------------------
# Dependency for FastAPI
# ---------------------------
async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
