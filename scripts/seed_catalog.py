#!/usr/bin/env python3
"""Catalog seeding script for MediaWatch.

This script connects to the database, creates all tables, and loads
tags and topics from config/catalog.yaml using the repository layer.
"""

import asyncio
import sys
from pathlib import Path

import yaml

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from mediawatch.core.db import create_all, get_sessionmaker
from mediawatch.core.repositories import (
    get_tag_catalog, get_topic_catalog, upsert_tag_from_yaml, upsert_topic_from_yaml
)
from mediawatch.core.logging import setup_logging


def load_yaml_config(file_path: Path) -> dict:
    """Load YAML configuration file."""
    if not file_path.exists():
        print(f"Warning: {file_path} not found, skipping...")
        return {}

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
            print(f"✅ Loaded config from {file_path}")
            return config
    except yaml.YAMLError as e:
        print(f"❌ Error loading {file_path}: {e}")
        return {}


async def seed_catalog(session, config: dict) -> tuple:
    """
    Seed tags first, then topics (topics reference tags by name).

    Returns (tags processed, topics processed).
    """
    tags_processed = 0
    for tag_config in config.get('tags', []):
        try:
            tag = await upsert_tag_from_yaml(session, tag_config)
            print(f"  ✅ tag {tag.name}")
            tags_processed += 1
        except ValueError as e:
            print(f"  ❌ Error processing tag {tag_config}: {e}")

    topics_processed = 0
    for topic_config in config.get('topics', []):
        try:
            topic = await upsert_topic_from_yaml(session, topic_config)
            print(f"  ✅ topic {topic.name} ({len(topic.tags)} tags)")
            topics_processed += 1
        except ValueError as e:
            print(f"  ❌ Error processing topic {topic_config}: {e}")

    await session.commit()
    return tags_processed, topics_processed


async def main():
    """Main seeding function."""
    setup_logging("seed")
    print("🌱 Starting MediaWatch catalog seeding...")

    config = load_yaml_config(project_root / "config" / "catalog.yaml")
    if not config:
        print("⚠️  Nothing to seed")
        return 1

    print("\n📊 Creating database tables...")
    await create_all()
    print("✅ Database tables ready")

    async with get_sessionmaker()() as session:
        tags_processed, topics_processed = await seed_catalog(session, config)
        tags = await get_tag_catalog(session)
        topics = await get_topic_catalog(session)

    print("\n" + "=" * 60)
    print("🎉 CATALOG SEEDING COMPLETE!")
    print("=" * 60)
    print(f"🏷️  Tags processed: {tags_processed} (total in catalog: {len(tags)})")
    print(f"📚 Topics processed: {topics_processed} (total in catalog: {len(topics)})")
    for topic in topics:
        status = "active" if topic.active else "inactive"
        print(f"   - {topic.name} [{status}]: {', '.join(sorted(topic.tag_names)) or 'no tags'}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
