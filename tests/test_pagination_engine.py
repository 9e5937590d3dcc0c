import asyncio

import pytest

from metaql.config import EngineConfig
from metaql.core.selection import FieldSelection
from metaql.errors import QueryExecutionError
from metaql.pagination.cache import PageCache, PageCacheKey, PageData, PageInfo
from metaql.pagination.engine import InfiniteTable, PagePlan, TableOptions, flatten_connections

from tests.fixtures import RecordingTransport, make_rows


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _table(builder, transport, *, page_size=100, cache=None, config=None, **options):
    return InfiniteTable(
        'User',
        builder=builder,
        transport=transport,
        cache=cache,
        options=TableOptions(page_size=page_size, **options),
        config=config or EngineConfig(stale_time=None),
    )


async def _loaded(table):
    table.start()
    await table.wait_idle()
    return table


class TestPagePolicy:
    """Cursor/offset choice per page."""

    @pytest.mark.asyncio
    async def test_first_page_uses_first_only(self, blog_builder):
        transport = RecordingTransport(make_rows(1000))
        table = await _loaded(_table(blog_builder, transport))
        assert transport.page_calls() == [{'first': 100}]
        assert table.total_count == 1000
        assert dict(table.cursor_chain) == {0: 'c99'}
        assert table.has_initial_data
        assert table.get_row_at_index(5)['id'] == 6
        assert transport.documents[0].query_name == 'getUsersQuery'

    @pytest.mark.asyncio
    async def test_rows_150_to_250_load_pages_1_to_3(self, blog_builder):
        transport = RecordingTransport(make_rows(1000))
        table = await _loaded(_table(blog_builder, transport))
        table.ensure_rows_loaded(150, 250)
        await table.wait_idle()
        assert transport.page_calls() == [
            {'first': 100},
            {'first': 100, 'after': 'c99'},
            {'first': 100, 'offset': 200},
            {'first': 100, 'offset': 300},
        ]
        assert table.loaded_pages == (0, 1, 2, 3)
        # each page records its own end cursor
        assert dict(table.cursor_chain) == {0: 'c99', 1: 'c199', 2: 'c299', 3: 'c399'}
        assert table.get_row_at_index(250)['id'] == 251

    @pytest.mark.asyncio
    async def test_page_one_waits_for_page_zero_cursor(self, blog_builder):
        gate = asyncio.Event()
        transport = RecordingTransport(make_rows(1000), gate=gate)
        table = _table(blog_builder, transport)
        table.start()
        table.ensure_rows_loaded(100, 150)
        await asyncio.sleep(0)
        assert transport.page_calls() == [{'first': 100}, {'first': 100, 'offset': 200}]
        assert table.is_page_loading(0)
        assert not table.is_page_loading(1)
        assert table.is_loading
        gate.set()
        await table.wait_idle()
        assert transport.page_calls()[2:] == [{'first': 100, 'after': 'c99'}]
        assert table.loaded_pages == (0, 1, 2)
        assert not table.is_loading

    @pytest.mark.asyncio
    async def test_known_predecessor_cursor_beats_offset(self, blog_builder):
        transport = RecordingTransport(make_rows(1000))
        table = await _loaded(_table(blog_builder, transport))
        table.ensure_rows_loaded(0, 100)
        await table.wait_idle()
        table.ensure_rows_loaded(200, 210)
        await table.wait_idle()
        assert transport.page_calls()[1:] == [
            {'first': 100, 'after': 'c99'},
            {'first': 100, 'after': 'c199'},
            {'first': 100, 'offset': 300},
        ]

    @pytest.mark.asyncio
    async def test_total_count_bounds_requests(self, blog_builder):
        transport = RecordingTransport(make_rows(250))
        table = await _loaded(_table(blog_builder, transport))
        table.ensure_rows_loaded(0, 10_000)
        await table.wait_idle()
        assert table.requested_pages == {0, 1, 2}
        assert len(transport.calls) == 3
        assert table.get_row_at_index(249)['id'] == 250
        assert table.get_row_at_index(250) is None

    @pytest.mark.asyncio
    async def test_rows_past_the_end_are_not_requested(self, blog_builder):
        transport = RecordingTransport(make_rows(30))
        table = await _loaded(_table(blog_builder, transport, page_size=10))
        table.ensure_rows_loaded(50, 60)
        await table.wait_idle()
        assert table.requested_pages == {0}
        assert len(transport.calls) == 1

    def test_plan(self, blog_builder):
        table = _table(blog_builder, RecordingTransport([]))
        assert table.plan(0) == PagePlan(0)
        assert table.plan(1) is None
        assert table.plan(2) == PagePlan(2, offset=200)

    def test_variables(self, blog_builder):
        table = _table(
            blog_builder,
            RecordingTransport([]),
            order_by=('-createdAt', 'ghost', ('name', 'asc')),
            where={'name': {'equalTo': 'x'}},
        )
        assert table.variables_for(PagePlan(0)) == {
            'first': 100,
            'orderBy': ['CREATED_AT_DESC', 'NAME_ASC'],
            'filter': {'name': {'equalTo': 'x'}},
        }
        assert table.variables_for(PagePlan(3, after='c1'))['after'] == 'c1'

    def test_no_running_loop_defers_fetching(self, blog_builder):
        transport = RecordingTransport(make_rows(10))
        table = _table(blog_builder, transport)
        table.start()
        table.ensure_rows_loaded(0, 5)
        assert transport.calls == []
        assert table.requested_pages == {0, 1}


class TestInvalidation:
    """Option and entity changes."""

    @pytest.mark.asyncio
    async def test_order_change_drops_old_pages(self, blog_builder):
        transport = RecordingTransport(make_rows(1000))
        table = await _loaded(_table(blog_builder, transport, order_by=('name',)))
        table.ensure_rows_loaded(150, 250)
        await table.wait_idle()
        assert len(table.cache.keys_for('default', 'User')) == 4

        table.update_options(order_by=('-name',))
        assert table.cache.keys_for('default', 'User') == []
        assert dict(table.cursor_chain) == {}
        assert table.snapshot.total_count is None
        assert table.requested_pages == {0}
        await table.wait_idle()

        calls_before = len(transport.calls)
        table.ensure_rows_loaded(250, 251)
        await table.wait_idle()
        fresh = transport.calls[calls_before:]
        assert {'first': 100, 'offset': 200, 'orderBy': ['NAME_DESC']} in fresh
        assert table.loaded_pages == (0, 2, 3)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("change", [
        dict(selection='display'),
        dict(selection={'select': ['id', 'name']}),
        dict(selection={'include': {'postsByAuthorId': ['title']}}),
        dict(where={'name': {'startsWith': 'User 1'}}),
        dict(order_by=('-name',)),
        dict(page_size=50),
    ])
    async def test_any_fingerprint_change_refetches(self, blog_builder, change):
        transport = RecordingTransport(make_rows(1000))
        table = await _loaded(_table(blog_builder, transport))
        table.ensure_rows_loaded(150, 160)
        await table.wait_idle()
        assert len(table.cache.keys_for('default', 'User')) == 3
        before = table.options.fingerprint()

        table.update_options(**change)
        assert table.options.fingerprint() != before
        assert table.cache.keys_for('default', 'User') == []
        assert dict(table.cursor_chain) == {}
        assert table.requested_pages == {0}
        await table.wait_idle()

        options = table.options
        expected = blog_builder.query('User').select(options.selection).get_many().print()
        assert transport.documents[-1].serialized == expected.serialized
        last = transport.calls[-1]
        assert last['first'] == options.page_size
        assert 'after' not in last and 'offset' not in last
        assert last.get('filter') == (dict(options.where) if options.where else None)
        assert table.loaded_pages == (0,)

    @pytest.mark.asyncio
    async def test_display_preset_is_not_the_default_selection(self, blog_builder):
        transport = RecordingTransport(make_rows(300))
        table = await _loaded(_table(blog_builder, transport))
        assert 'profile' in transport.documents[0].serialized
        table.update_options(selection='display')
        table.ensure_rows_loaded(150, 160)
        await table.wait_idle()
        assert all('profile' not in d.serialized for d in transport.documents[1:])
        assert len(transport.documents) > 1

    @pytest.mark.asyncio
    async def test_same_fingerprint_keeps_state(self, blog_builder):
        transport = RecordingTransport(make_rows(300))
        table = await _loaded(_table(blog_builder, transport, where={'a': 1, 'b': 2}))
        table.set_options(TableOptions(page_size=100, where={'b': 2, 'a': 1}))
        await table.wait_idle()
        assert len(transport.calls) == 1
        assert dict(table.cursor_chain) == {0: 'c99'}

    @pytest.mark.asyncio
    async def test_disabled_until_enabled(self, blog_builder):
        transport = RecordingTransport(make_rows(10))
        table = _table(blog_builder, transport, enabled=False)
        table.start()
        await table.wait_idle()
        assert transport.calls == []
        table.update_options(enabled=True)
        await table.wait_idle()
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_superseded_response_is_dropped(self, blog_builder):
        gate = asyncio.Event()
        transport = RecordingTransport(make_rows(1000), gate=gate)
        table = _table(blog_builder, transport)
        table.start()
        await asyncio.sleep(0)
        table.update_options(page_size=50)
        await asyncio.sleep(0)
        gate.set()
        await table.wait_idle()
        assert [c['first'] for c in transport.calls] == [100, 50]
        assert dict(table.cursor_chain) == {0: 'c49'}
        assert table.get_row_at_index(49) is not None
        assert table.get_row_at_index(50) is None
        assert all(k.options.page_size == 50 for k in table.cache.keys_for('default', 'User'))

    @pytest.mark.asyncio
    async def test_entity_switch(self, blog_builder):
        transport = RecordingTransport(make_rows(30))
        table = await _loaded(_table(blog_builder, transport, page_size=10))
        table.set_entity('Post')
        assert table.cache.keys_for('default', 'User') == []
        await table.wait_idle()
        assert table.entity == 'Post'
        assert transport.documents[-1].operation_key == 'posts'
        assert transport.documents[-1].query_name == 'getPostsQuery'
        assert dict(table.cursor_chain) == {0: 'c9'}

    @pytest.mark.asyncio
    async def test_reset(self, blog_builder):
        transport = RecordingTransport(make_rows(1000))
        table = await _loaded(_table(blog_builder, transport))
        table.ensure_rows_loaded(0, 300)
        await table.wait_idle()
        table.reset()
        assert table.requested_pages == {0}
        await table.wait_idle()
        assert table.loaded_pages == (0,)


class TestRehydration:
    """Restoring the cursor chain from a shared cache."""

    @pytest.mark.asyncio
    async def test_remount_restores_cursor_chain(self, blog_builder):
        cache = PageCache()
        first = await _loaded(_table(blog_builder, RecordingTransport(make_rows(1000)), cache=cache))
        first.ensure_rows_loaded(0, 250)
        await first.wait_idle()

        transport = RecordingTransport(make_rows(1000))
        second = _table(blog_builder, transport, cache=cache)
        assert dict(second.cursor_chain) == {0: 'c99', 1: 'c199', 2: 'c299', 3: 'c399'}
        assert second.total_count == 1000
        assert second.has_initial_data
        await _loaded(second)
        assert transport.calls == []
        second.ensure_rows_loaded(400, 401)
        await second.wait_idle()
        assert transport.page_calls() == [{'first': 100, 'after': 'c399'}, {'first': 100, 'offset': 500}]

    def test_restore_stops_at_first_gap(self, blog_builder):
        options = TableOptions(page_size=10)
        cache = PageCache()
        for index in (0, 1, 3):
            cache.set(
                PageCacheKey('default', 'User', index, options.fingerprint()),
                PageData(rows=(), page_info=PageInfo(end_cursor=f"e{index}"), page_index=index, total_count=40),
            )
        table = InfiniteTable('User', builder=blog_builder, transport=RecordingTransport([]), cache=cache,
                              options=options)
        assert dict(table.cursor_chain) == {0: 'e0', 1: 'e1'}
        assert table.total_count == 40


class TestFailures:
    """Per-page errors."""

    @pytest.mark.asyncio
    async def test_failed_page_does_not_abort_others(self, blog_builder):
        def fail(variables):
            if variables.get('offset') == 200:
                return RuntimeError('boom')
            return None

        transport = RecordingTransport(make_rows(1000), fail=fail)
        table = await _loaded(_table(blog_builder, transport))
        table.ensure_rows_loaded(150, 250)
        await table.wait_idle()
        assert str(table.error) == 'boom'
        assert table.snapshot.failed_pages == {2}
        assert table.loaded_pages == (0, 1, 3)

        # no automatic retry
        table.ensure_rows_loaded(200, 210)
        await table.wait_idle()
        assert sum(1 for c in transport.calls if c.get('offset') == 200) == 1

        transport.fail = None
        table.invalidate()
        await table.wait_idle()
        assert table.error is None
        assert table.loaded_pages == (0, 1, 2, 3)

    @pytest.mark.asyncio
    async def test_missing_connection_is_an_error(self, blog_builder):
        class EmptyTransport:
            async def execute(self, document, variables=None):
                return {}

        table = await _loaded(_table(blog_builder, EmptyTransport()))
        assert isinstance(table.error, QueryExecutionError)
        assert "No data returned for table 'User'" in str(table.error)
        assert not table.has_initial_data


class TestRows:
    """Row access and local patches."""

    @pytest.mark.asyncio
    async def test_patch_is_visible_immediately(self, blog_builder):
        table = await _loaded(_table(blog_builder, RecordingTransport(make_rows(20)), page_size=10))
        assert table.update_row_at_index(3, {'name': 'Patched'}) is True
        assert table.get_row_at_index(3)['name'] == 'Patched'
        assert table.get_row_at_index(3)['email'] == 'user003@example.com'
        assert table.update_row_at_index(15, {'name': 'x'}) is False

    @pytest.mark.asyncio
    async def test_falls_back_to_fetch_results_after_eviction(self, blog_builder):
        clock = FakeClock()
        cache = PageCache(gc_time=60, clock=clock)
        table = await _loaded(_table(blog_builder, RecordingTransport(make_rows(20)), page_size=10, cache=cache))
        clock.now = 120
        assert table.cache.get(PageCacheKey('default', 'User', 0, table.options.fingerprint())) is None
        assert table.is_row_loaded(4)
        assert table.get_row_at_index(4)['id'] == 5
        assert not table.is_row_loaded(12)

    @pytest.mark.asyncio
    async def test_stale_pages_are_refetched(self, blog_builder):
        clock = FakeClock()
        transport = RecordingTransport(make_rows(20))
        table = _table(
            blog_builder,
            transport,
            page_size=10,
            cache=PageCache(gc_time=None, clock=clock),
            config=EngineConfig(stale_time=30, prefetch_pages=0),
        )
        await _loaded(table)
        table.start()
        await table.wait_idle()
        assert len(transport.calls) == 1
        clock.now = 31
        table.start()
        await table.wait_idle()
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_edges_responses(self, blog_builder):
        transport = RecordingTransport(make_rows(5), edges=True)
        table = await _loaded(_table(blog_builder, transport, page_size=10, config=EngineConfig(use_edges=True)))
        assert 'edges' in transport.documents[0].serialized
        assert table.get_row_at_index(4)['id'] == 5


class TestSnapshots:
    """Listener notifications."""

    @pytest.mark.asyncio
    async def test_listeners_receive_increasing_versions(self, blog_builder):
        table = _table(blog_builder, RecordingTransport(make_rows(20)), page_size=10)
        seen = []
        unsubscribe = table.subscribe(seen.append)
        await _loaded(table)
        assert seen
        versions = [s.version for s in seen]
        assert versions == sorted(set(versions))
        assert seen[-1].loaded_pages == (0,)
        assert seen[-1].total_count == 20
        assert seen[-1].entity == 'User'
        unsubscribe()
        count = len(seen)
        table.update_row_at_index(0, {'name': 'x'})
        assert len(seen) == count

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_fetching(self, blog_builder):
        table = _table(blog_builder, RecordingTransport(make_rows(20)), page_size=10)

        def broken(snapshot):
            raise RuntimeError('listener')

        table.subscribe(broken)
        await _loaded(table)
        assert table.loaded_pages == (0,)

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending_fetches(self, blog_builder):
        table = _table(blog_builder, RecordingTransport(make_rows(20), gate=asyncio.Event()), page_size=10)
        table.start()
        await asyncio.sleep(0)
        assert table.is_loading
        await table.aclose()
        assert not table.is_loading


def test_flatten_connections():
    selection = (
        FieldSelection(name='id'),
        FieldSelection(name='author', is_object=True, is_belong_to=True),
        FieldSelection(name='postsByAuthorId', is_object=True),
    )
    row = {'id': 1, 'author': {'name': 'a'}, 'postsByAuthorId': {'totalCount': 1, 'nodes': [{'title': 't'}]}}
    assert flatten_connections(row, selection) == {
        'id': 1,
        'author': {'name': 'a'},
        'postsByAuthorId': [{'title': 't'}],
    }
    assert flatten_connections(None, selection) is None
