"""Shared fixtures for MetaQL tests: metadata, sample rows and fake transports."""

import asyncio
from datetime import datetime, timezone, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from metaql.builder import QueryBuilder
from metaql.introspection import generate_introspection_schema
from metaql.meta import (
    IntrospectionSchema,
    MetaObject,
    MetaTable,
    MutationType,
    OperationDefinition,
    QType,
    QueryProperty,
)

from .models import User, Post


def build_users_table() -> MetaTable:
    """The ``users`` table of the selection scenarios."""
    return MetaTable.from_dict({
        'name': 'users',
        'fields': [
            {'name': 'id', 'type': {'gqlType': 'Int', 'pgType': 'int4'}},
            {'name': 'name', 'type': {'gqlType': 'String', 'pgType': 'text'}},
            {'name': 'email', 'type': {'gqlType': 'String', 'pgType': 'text'}},
            {'name': 'createdAt', 'type': {'gqlType': 'Datetime', 'pgType': 'timestamptz'}},
            {'name': 'metadata', 'type': {'gqlType': 'JSON', 'pgType': 'jsonb'}},
        ],
        'primaryConstraints': [{'name': 'id', 'type': 'primary'}],
    })


BLOG_META = {
    '_meta': {
        'tables': [
            {
                'name': 'User',
                'fields': [
                    {'name': 'id', 'type': {'gqlType': 'Int', 'pgType': 'int4'}},
                    {'name': 'name', 'type': {'gqlType': 'String', 'pgType': 'text'}},
                    {'name': 'email', 'type': {'gqlType': 'String', 'pgType': 'text'}},
                    {'name': 'createdAt', 'type': {'gqlType': 'Datetime', 'pgType': 'timestamptz'}},
                    {'name': 'profile', 'type': {'gqlType': 'JSON', 'pgType': 'jsonb'}},
                ],
                'primaryConstraints': [{'name': 'id'}],
                'uniqueConstraints': [{'name': 'email'}],
                'relations': [
                    {'fieldName': 'postsByAuthorId', 'kind': 'hasMany', 'refTable': 'Post'},
                ],
            },
            {
                'name': 'Post',
                'fields': [
                    {'name': 'id', 'type': {'gqlType': 'Int', 'pgType': 'int4'}},
                    {'name': 'title', 'type': {'gqlType': 'String', 'pgType': 'text'}},
                    {'name': 'body', 'type': {'gqlType': 'String', 'pgType': 'text'}},
                    {'name': 'authorId', 'type': {'gqlType': 'Int', 'pgType': 'int4'}},
                    {'name': 'location', 'type': {'gqlType': 'GeometryPoint', 'pgType': 'geometry', 'subtype': 'Point'}},
                    {'name': 'area', 'type': {'gqlType': 'GeoJSON', 'pgType': 'geometry'}},
                    {'name': 'landmarks', 'type': {
                        'gqlType': 'GeometryGeometryCollection', 'pgType': 'geometry', 'subtype': 'GeometryCollection',
                    }},
                    {'name': 'readingTime', 'type': {'gqlType': 'Interval', 'pgType': 'interval'}},
                    {'name': 'tags', 'type': {'gqlType': 'String', 'pgType': 'text', 'isArray': True}},
                    {'name': 'createdAt', 'type': {'gqlType': 'Datetime', 'pgType': 'timestamptz'}},
                    {'name': 'updatedAt', 'type': {'gqlType': 'Datetime', 'pgType': 'timestamptz'}},
                ],
                'primaryConstraints': [{'name': 'id'}],
                'foreignConstraints': [
                    {'fromKey': {'name': 'authorId', 'alias': 'author'}, 'refTable': 'User', 'toKey': {'name': 'id'}},
                ],
                'relations': [
                    {'fieldName': 'commentsByPostId', 'kind': 'hasMany', 'refTable': 'Comment'},
                ],
            },
            {
                'name': 'Comment',
                'fields': [
                    {'name': 'id', 'type': {'gqlType': 'Int', 'pgType': 'int4'}},
                    {'name': 'body', 'type': {'gqlType': 'String', 'pgType': 'text'}},
                    {'name': 'postId', 'type': {'gqlType': 'Int', 'pgType': 'int4'}},
                ],
                'primaryConstraints': [{'name': 'id'}],
                'foreignConstraints': [
                    {'fromKey': {'name': 'postId', 'alias': 'post'}, 'refTable': 'Post', 'toKey': {'name': 'id'}},
                ],
            },
        ]
    }
}


def build_blog_meta() -> MetaObject:
    return MetaObject.from_dict(BLOG_META)


def build_blog_introspection(meta: MetaObject) -> IntrospectionSchema:
    """Generated operations plus a second delete mutation keyed by email."""
    schema = generate_introspection_schema(meta)
    ops = dict(schema.operations)
    ops['deleteUserByEmail'] = OperationDefinition(
        model='User',
        qtype=QType.MUTATION,
        mutation_type=MutationType.DELETE,
        properties={'input': QueryProperty(
            name='input',
            type='DeleteUserByEmailInput',
            is_not_null=True,
            properties={'email': QueryProperty(name='email', type='String', is_not_null=True)},
        )},
    )
    return IntrospectionSchema(operations=ops)


@pytest.fixture
def users_table() -> MetaTable:
    return build_users_table()


@pytest.fixture
def blog_meta() -> MetaObject:
    return build_blog_meta()


@pytest.fixture
def blog_introspection(blog_meta) -> IntrospectionSchema:
    return build_blog_introspection(blog_meta)


@pytest.fixture
def blog_builder(blog_meta, blog_introspection) -> QueryBuilder:
    return QueryBuilder(blog_meta, blog_introspection)


class RecordingTransport:
    """In-memory list backend for pagination tests.

    Serves ``rows`` through ``first`` + ``after``/``offset`` with cursors of the
    form ``c<index>`` and records the variables of every call. ``gate`` holds
    all responses until set; ``fail`` maps variables to an exception to raise.
    The connection is returned under the document's operation key.
    """

    def __init__(self, rows, key='users', *, fail=None, gate=None, edges=False):
        self.rows = list(rows)
        self.key = key
        self.fail = fail
        self.gate = gate
        self.edges = edges
        self.calls = []
        self.documents = []

    def page_calls(self):
        return [{k: v for k, v in c.items() if k in ('first', 'after', 'offset')} for c in self.calls]

    async def execute(self, document, variables=None):
        variables = dict(variables or {})
        self.calls.append(variables)
        self.documents.append(document)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            exc = self.fail(variables)
            if exc is not None:
                raise exc
        first = variables.get('first', len(self.rows))
        if 'after' in variables:
            start = int(variables['after'][1:]) + 1
        else:
            start = variables.get('offset') or 0
        chunk = self.rows[start:start + first]
        connection = {
            'totalCount': len(self.rows),
            'pageInfo': {
                'hasNextPage': start + len(chunk) < len(self.rows),
                'hasPreviousPage': start > 0,
                'startCursor': f"c{start}" if chunk else None,
                'endCursor': f"c{start + len(chunk) - 1}" if chunk else None,
            },
        }
        if self.edges:
            connection['edges'] = [{'cursor': f"c{start + i}", 'node': dict(r)} for i, r in enumerate(chunk)]
        else:
            connection['nodes'] = [dict(r) for r in chunk]
        key = getattr(document, 'operation_key', None) or self.key
        return {key: connection}


def make_rows(count):
    return [{'id': i + 1, 'name': f"User {i:03d}", 'email': f"user{i:03d}@example.com"} for i in range(count)]


async def create_sample_users(session: AsyncSession, count: int = 35):
    """Create and commit ``count`` users named ``User 00`` .. in insertion order."""
    base = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=count)
    users = [
        User(
            name=f"User {i:02d}",
            email=f"user{i:02d}@example.com",
            is_admin=(i % 10 == 0),
            created_at=base + timedelta(days=i),
            profile={'rank': i},
        )
        for i in range(count)
    ]
    session.add_all(users)
    await session.flush()
    await session.commit()
    return users


@pytest.fixture(scope="function")
async def sample_users(db_session: AsyncSession):
    return await create_sample_users(db_session)


async def create_sample_posts(session: AsyncSession, users):
    """Two posts for each of the first three users."""
    posts = []
    for i, user in enumerate(users[:3]):
        for j in range(2):
            posts.append(Post(
                title=f"Post {i}.{j}",
                content=f"Body of post {i}.{j}",
                author_id=user.id,
                location=f"{i}.5,{j}.25",
            ))
    session.add_all(posts)
    await session.flush()
    await session.commit()
    return posts


@pytest.fixture(scope="function")
async def sample_posts(db_session: AsyncSession, sample_users):
    return await create_sample_posts(db_session, sample_users)


@pytest.fixture(scope="function")
async def populated_db(sample_users, sample_posts):
    return {'users': sample_users, 'posts': sample_posts}


@pytest.fixture(scope="function")
async def graphql_context(db_session: AsyncSession):
    """Context for the test schema; ``requests`` logs each connection fetch."""
    return {'db_session': db_session, 'db_lock': asyncio.Lock(), 'requests': []}
