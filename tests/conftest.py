"""Shared fixtures: in-memory SQLite store and a small tag/topic catalog."""
import itertools
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mediawatch.core.db import Base
from mediawatch.core import models  # noqa: F401  registers tables
from mediawatch.core.models import Entry, Site, Tag, Tagging, Topic

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

_urls = itertools.count(1)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def catalog(session_factory):
    """Tags and topics:

    - Politics: Paraguay
    - Energy: Itaipú, Paraguay
    - Sports: Cerro Porteño
    """
    async with session_factory() as session:
        paraguay = Tag(name="Paraguay", variations="PY, Paraguai")
        itaipu = Tag(name="Itaipú", variations="Itaipu, Itaipú Binacional")
        cerro = Tag(name="Cerro Porteño", variations="azulgrana")
        politics = Topic(name="Politics", tags=[paraguay])
        energy = Topic(name="Energy", tags=[itaipu, paraguay])
        sports = Topic(name="Sports", tags=[cerro])
        site = Site(name="ABC Color", url="https://www.abc.com.py")
        session.add_all([paraguay, itaipu, cerro, politics, energy, sports, site])
        await session.commit()

        return {
            "tags": {"paraguay": paraguay.id, "itaipu": itaipu.id, "cerro": cerro.id},
            "topics": {"politics": politics.id, "energy": energy.id, "sports": sports.id},
            "site": site.id,
        }


async def add_entry(session_factory, title, content="", published_at=None, site_id=None,
                    reactions=0, comments=0, shares=0, polarity=None, tags=(), title_tags=()):
    """Insert an entry with stored tag lists; returns its id."""
    async with session_factory() as session:
        entry = Entry(
            url=f"https://example.com/article-{next(_urls)}",
            title=title,
            content=content,
            published_at=published_at or NOW - timedelta(hours=1),
            site_id=site_id,
            reaction_count=reactions,
            comment_count=comments,
            share_count=shares,
            total_count=reactions + comments + shares,
            polarity=polarity,
        )
        session.add(entry)
        await session.flush()

        for context, tag_ids in (("tags", tags), ("title_tags", title_tags)):
            for tag_id in tag_ids:
                session.add(Tagging(tag_id=tag_id, taggable_type="Entry",
                                    taggable_id=entry.id, context=context))
        await session.commit()
        return entry.id
