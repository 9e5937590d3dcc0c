"""
Basic example of using MetaQL with SQLAlchemy models.

This example demonstrates:
- Deriving table metadata and operations from declarative models
- Building list, single-row, count and mutation documents
- Scrolling a large table with InfiniteTable against a PostGraphile endpoint

Set METAQL_ENDPOINT (and optionally METAQL_TOKEN) to run the pagination part.
"""

import asyncio
import logging
import os
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, relationship

from metaql import EngineConfig, HttpTransport, InfiniteTable, QueryBuilder, TableOptions, introspect


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    posts = relationship("Post", back_populates="author")


class Post(Base):
    __tablename__ = 'posts'

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    content = Column(Text)
    author_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    author = relationship("User", back_populates="posts")


def print_documents(builder: QueryBuilder) -> None:
    posts = builder.query('Post').select({'select': ['id', 'title'], 'include': {'author': ['name']}})
    users = builder.query('User').select('minimal')
    for built in (posts.get_many(), users.get_one(), users.count(), users.create(), users.update(), users.delete()):
        printed = built.print()
        print(f"# {printed.query_name}")
        print(printed.serialized)
        print()


async def scroll(builder: QueryBuilder, config: EngineConfig) -> None:
    async with HttpTransport(config.endpoint, credential=os.getenv('METAQL_TOKEN'), timeout=config.http_timeout) as t:
        table = InfiniteTable(
            'User',
            builder=builder,
            transport=t,
            options=TableOptions(page_size=config.page_size, order_by=('-createdAt',)),
            config=config,
        )
        table.subscribe(lambda s: print(f"loaded pages {list(s.loaded_pages)} of {s.total_count} rows"))
        table.start()
        await table.wait_idle()
        # pretend the user scrolled to the middle of the third page
        table.ensure_rows_loaded(2 * config.page_size + 10, 2 * config.page_size + 30)
        await table.wait_idle()
        if table.error is not None:
            print("Error:", table.error)
        else:
            print("Row 0:", table.get_row_at_index(0))
        await table.aclose()


async def main():
    logging.basicConfig(level=logging.INFO)
    meta, schema = introspect(Base)
    builder = QueryBuilder(meta, schema)
    print_documents(builder)

    config = EngineConfig.from_env(page_size=50)
    if config.endpoint:
        await scroll(builder, config)


if __name__ == "__main__":
    asyncio.run(main())
