import argparse
import asyncio
from gradebook.database import engine, Base

# Import the models module so every table is registered on Base.metadata
import gradebook.models  # noqa: F401


async def create_tables(reset: bool = False):
    async with engine.begin() as conn:
        if reset:
            print("⚠️ Dropping all tables...")
            await conn.run_sync(Base.metadata.drop_all)

        print("🚀 Creating database tables...")
        await conn.run_sync(Base.metadata.create_all)
        print("✅ All tables created successfully!")
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the gradebook tables.")
    parser.add_argument("--reset", action="store_true", help="drop all tables first")
    args = parser.parse_args()
    asyncio.run(create_tables(reset=args.reset))
