from dataclasses import replace

from fakes import H, T0, FakeFeed, FakeStore, make_candle, series
from market_data.synchronizer import CandleSynchronizer, find_missing_ranges, merge_candles
from shared.models.models import TimeRange
from shared.utils.cancellation import CancelToken


def test_missing_ranges_before_and_after():
    stored = series(T0, 3)  # t0, t0+i, t0+2i
    ranges = find_missing_ranges(stored, T0 - H, T0 + 3 * H, H)
    assert ranges == [TimeRange(T0 - H, T0 - H), TimeRange(T0 + 3 * H, T0 + 3 * H)]


def test_missing_ranges_inner_gap_and_empty_store():
    stored = [make_candle(T0), make_candle(T0 + 4 * H)]
    assert find_missing_ranges(stored, T0, T0 + 4 * H, H) == [TimeRange(T0 + H, T0 + 3 * H)]
    assert find_missing_ranges([], T0, T0 + 10 * H, H) == [TimeRange(T0, T0 + 10 * H)]


def test_missing_ranges_complete_or_unknown_interval():
    stored = series(T0, 5)
    assert find_missing_ranges(stored, T0, T0 + 4 * H, H) == []
    # 未知周期：关闭缺口检测
    assert find_missing_ranges([make_candle(T0), make_candle(T0 + 9 * H)], T0, T0 + 20 * H, None) == []


def test_missing_ranges_ignores_partial_edges():
    # end 落在最后一根 K 线内部，不算缺失
    stored = series(T0, 2)
    assert find_missing_ranges(stored, T0, T0 + H + 10, H) == []


def test_merge_threshold_keeps_history_and_takes_newer():
    t1, t2, t3 = T0, T0 + H, T0 + 2 * H
    store = [make_candle(t1, 1.0), make_candle(t3, 3.0)]
    network = [make_candle(t1, 10.0), make_candle(t2, 20.0), make_candle(t3, 30.0)]

    merged = merge_candles(store, network)
    assert [c.open_time for c in merged] == [t1, t2, t3]
    assert [c.close for c in merged] == [10.0, 20.0, 30.0]

    merged = merge_candles(store, network, threshold=t1)
    assert [c.open_time for c in merged] == [t1, t2, t3]
    assert [c.close for c in merged] == [1.0, 20.0, 30.0]


def test_merge_drops_network_rows_at_or_before_threshold():
    store = [make_candle(T0 + 5 * H, 5.0)]
    network = [make_candle(T0, 0.5), make_candle(T0 + 6 * H, 6.0)]
    merged = merge_candles(store, network, threshold=T0 + 5 * H)
    assert [c.open_time for c in merged] == [T0 + 5 * H, T0 + 6 * H]


def test_fetch_range_fills_gaps_and_persists():
    remote = series(T0, 10, close=50.0)
    store = FakeStore([remote[0], remote[1], remote[5]])
    feed = FakeFeed(remote)
    sync = CandleSynchronizer(store, feed)

    out = sync.fetch_range("BTCUSDT", "1h", T0, T0 + 9 * H)

    assert [c.open_time for c in out] == [T0 + i * H for i in range(10)]
    assert [call["start"] for call in feed.calls] == [T0 + 2 * H, T0 + 6 * H]
    assert len(store.rows) == 10


def test_fetch_range_complete_store_skips_remote():
    store = FakeStore(series(T0, 5))
    feed = FakeFeed(series(T0, 5))
    out = CandleSynchronizer(store, feed).fetch_range("BTCUSDT", "1h", T0, T0 + 4 * H)
    assert len(out) == 5
    assert feed.calls == []


def test_fetch_range_paginates():
    remote = series(T0, 25)
    feed = FakeFeed(remote, page_limit=10)
    store = FakeStore()
    out = CandleSynchronizer(store, feed).fetch_range("BTCUSDT", "1h", T0, T0 + 24 * H)
    assert len(out) == 25
    assert [call["start"] for call in feed.calls] == [T0, T0 + 10 * H, T0 + 20 * H]


def test_fetch_range_skips_failed_range_and_continues():
    remote = series(T0, 10)
    store = FakeStore([remote[0], remote[4], remote[9]])
    feed = FakeFeed(remote)
    feed.fail_starts.add(T0 + H)
    out = CandleSynchronizer(store, feed).fetch_range("BTCUSDT", "1h", T0, T0 + 9 * H)
    times = [c.open_time for c in out]
    assert T0 + H not in times
    assert [T0 + 5 * H, T0 + 6 * H, T0 + 7 * H, T0 + 8 * H] == [t for t in times if T0 + 4 * H < t < T0 + 9 * H]


def test_fetch_range_store_read_failure_degrades_to_remote():
    remote = series(T0, 6)
    store = FakeStore()
    store.fail_read = True
    out = CandleSynchronizer(store, FakeFeed(remote)).fetch_range("BTCUSDT", "1h", T0, T0 + 5 * H)
    assert len(out) == 6


def test_fetch_range_reread_failure_merges_locally():
    remote = series(T0, 6, close=7.0)
    store = FakeStore(remote[:2])
    store.fail_reread = True
    out = CandleSynchronizer(store, FakeFeed(remote)).fetch_range("BTCUSDT", "1h", T0, T0 + 5 * H)
    assert [c.open_time for c in out] == [c.open_time for c in remote]


def test_fetch_range_write_failure_still_returns_fetched():
    remote = series(T0, 4)
    store = FakeStore()
    store.fail_write = True
    out = CandleSynchronizer(store, FakeFeed(remote)).fetch_range("BTCUSDT", "1h", T0, T0 + 3 * H)
    assert len(out) == 4
    assert store.rows == {}


def test_fetch_range_both_sources_down_returns_empty():
    store = FakeStore()
    store.fail_read = True
    feed = FakeFeed()
    feed.fail_all = True
    assert CandleSynchronizer(store, feed).fetch_range("BTCUSDT", "1h", T0, T0 + 3 * H) == []


def test_fetch_range_cancelled_makes_no_io():
    store = FakeStore(series(T0, 2))
    feed = FakeFeed(series(T0, 10))
    token = CancelToken()
    token.cancel()
    out = CandleSynchronizer(store, feed).fetch_range("BTCUSDT", "1h", T0, T0 + 9 * H, token=token)
    assert out == []
    assert feed.calls == [] and store.reads == 0


def test_fetch_latest_from_store_when_enough():
    store = FakeStore(series(T0, 10))
    feed = FakeFeed()
    out = CandleSynchronizer(store, feed).fetch_latest("BTCUSDT", "1h", 5)
    assert [c.open_time for c in out] == [T0 + i * H for i in range(5, 10)]
    assert feed.calls == []


def test_fetch_latest_tops_up_from_remote_and_persists_only_newer():
    stored = series(T0, 3, close=1.0)
    remote = [replace(c, close=99.0) for c in series(T0, 8)]
    store = FakeStore(stored)
    feed = FakeFeed(remote)
    out = CandleSynchronizer(store, feed).fetch_latest("BTCUSDT", "1h", 5)

    assert feed.calls[0]["limit"] == 10
    assert [c.open_time for c in out] == [T0 + i * H for i in range(3, 8)]
    persisted = [c.open_time for batch in store.upserts for c in batch]
    assert persisted == [T0 + i * H for i in range(3, 8)]
    # 阈值之前的存储数据未被网络数据覆盖
    assert store.rows[T0].close == 1.0


def test_fetch_latest_remote_failure_returns_store_data():
    store = FakeStore(series(T0, 2))
    feed = FakeFeed()
    feed.fail_all = True
    out = CandleSynchronizer(store, feed).fetch_latest("BTCUSDT", "1h", 5)
    assert len(out) == 2


def test_fetch_latest_store_failure_goes_remote():
    store = FakeStore()
    store.fail_read = True
    out = CandleSynchronizer(store, FakeFeed(series(T0, 10))).fetch_latest("BTCUSDT", "1h", 4)
    assert [c.open_time for c in out] == [T0 + i * H for i in range(6, 10)]
