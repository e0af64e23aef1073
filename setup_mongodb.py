"""
MongoDB Setup Script
Checks the connection, creates the collections' indexes and optionally seeds
an agent profile from a JSON file.

    python setup_mongodb.py
    python setup_mongodb.py --seed-agent agent.json
"""
import argparse
import asyncio
import json
from pathlib import Path
from leadify.config import get_settings
from leadify.repositories import AgentConfigRepository, db_manager
from leadify.repositories.connection import AGENT_CONFIGS, CONVERSATIONS, LEADS, TOKEN_USAGE


async def setup_mongodb(seed_agent: Path | None = None):
    settings = get_settings()
    print("🔄 Connecting to MongoDB...")
    print(f"   Database: {settings.mongodb_database}")
    print()

    try:
        await db_manager.connect()
        if not await db_manager.ping():
            raise RuntimeError(f"MongoDB at {settings.mongodb_uri} did not answer a ping")
        print("✅ Connection successful!")
        print()

        db = db_manager.database

        existing_collections = await db.list_collection_names()
        print(f"📦 Existing collections: {existing_collections or 'None'}")
        print()

        print("🔨 Creating indexes...")
        await db_manager.create_indexes()
        print("✅ Indexes created successfully!")
        print()

        print("📊 Verifying indexes:")
        total = 0
        for name in (CONVERSATIONS, TOKEN_USAGE, LEADS, AGENT_CONFIGS):
            indexes = await db[name].index_information()
            total += len(indexes)
            print(f"   {name}: {len(indexes)} indexes")
            for idx_name in indexes:
                print(f"      - {idx_name}")

        if seed_agent:
            # Validated before writing; an invalid scoring config raises ConfigInvalid
            profile = await AgentConfigRepository(db).put(json.loads(seed_agent.read_text()))
            print()
            print(f"🌱 Seeded agent profile: {profile.agent_id} (organization {profile.organization_id})")

        print()
        print("🎉 MongoDB setup complete!")
        print(f"   ✅ Database: {settings.mongodb_database}")
        print(f"   ✅ Indexes: {total} total")
        print()

    except Exception as e:
        print(f"❌ Error: {e}")
        print()
        print("💡 Troubleshooting:")
        print("   1. Check MONGODB_URI and that the server is reachable from this host")
        print("   2. Check that the username and password are correct")
        print("   3. For Atlas, verify your IP is in the Network Access list")
        raise

    finally:
        await db_manager.disconnect()
        print("👋 Disconnected from MongoDB")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create Leadify MongoDB indexes")
    parser.add_argument("--seed-agent", type=Path, help="JSON file with one agent profile")
    args = parser.parse_args()
    asyncio.run(setup_mongodb(args.seed_agent))
