import json
from unittest.mock import MagicMock

import psycopg2
import pytest

from database import candle_store
from database.candle_store import PostgresCandleStore
from database.dataset_store import ParquetCandleStore, candles_to_frame, frame_to_candles
from fakes import H, T0, make_candle, series
from shared.errors import DataSourceError


def _row(open_time, close=100.0):
    c = make_candle(open_time, close)
    return candle_store._row(c)


def _pg(rows=None):
    conn = MagicMock()
    conn.closed = 0
    cur = conn.cursor.return_value.__enter__.return_value
    cur.fetchall.return_value = rows or []
    return PostgresCandleStore(conn=conn, batch_size=2), conn, cur


def test_pg_range_query_ascending():
    store, _, cur = _pg([_row(T0), _row(T0 + H, 101.0)])
    candles = store.get_range("BTCUSDT", "1h", start=T0, end=T0 + H)
    sql, params = cur.execute.call_args[0]
    assert "ORDER BY open_time ASC" in sql
    assert params == ("BTCUSDT", "1h", T0, T0 + H)
    assert [c.close for c in candles] == [100.0, 101.0]


def test_pg_latest_n_is_reversed_to_ascending():
    store, _, cur = _pg([_row(T0 + H), _row(T0)])
    candles = store.get_range("BTCUSDT", "1h", limit=2)
    sql, params = cur.execute.call_args[0]
    assert "ORDER BY open_time DESC LIMIT %s" in sql
    assert params == ("BTCUSDT", "1h", 2)
    assert [c.open_time for c in candles] == [T0, T0 + H]



def test_pg_zero_start_is_a_lower_bound():
    store, _, cur = _pg([_row(0), _row(H)])
    candles = store.get_range("BTCUSDT", "1h", start=0, end=0, limit=2)
    sql, params = cur.execute.call_args[0]
    assert "open_time >= %s" in sql and "open_time <= %s" in sql
    assert "ORDER BY open_time ASC LIMIT %s" in sql
    assert params == ("BTCUSDT", "1h", 0, 0, 2)
    assert [c.open_time for c in candles] == [0, H]

def test_pg_upsert_batches_and_commits(monkeypatch):
    batches = []
    monkeypatch.setattr(candle_store, "execute_values", lambda cur, sql, rows: batches.append((sql, rows)))
    store, conn, _ = _pg()
    assert store.upsert_many("BTCUSDT", "1h", series(T0, 5)) == 5
    assert [len(rows) for _, rows in batches] == [2, 2, 1]
    assert "ON CONFLICT (symbol, timeframe, open_time) DO UPDATE" in batches[0][0]
    assert conn.commit.call_count == 3
    assert store.upsert_many("BTCUSDT", "1h", []) == 0


def test_pg_errors_roll_back_and_wrap(monkeypatch):
    store, conn, cur = _pg()
    cur.execute.side_effect = psycopg2.OperationalError("server closed the connection")
    with pytest.raises(DataSourceError):
        store.get_range("BTCUSDT", "1h")
    conn.rollback.assert_called_once()

    def boom(cur, sql, rows):
        raise psycopg2.IntegrityError("bad row")

    monkeypatch.setattr(candle_store, "execute_values", boom)
    with pytest.raises(DataSourceError, match="after 0 rows"):
        store.upsert_many("BTCUSDT", "1h", series(T0, 1))


def test_pg_latest_open_time_and_sync_status():
    store, _, cur = _pg([(None,)])
    assert store.get_latest_open_time("BTCUSDT", "1h") is None
    cur.fetchall.return_value = [(T0,)]
    assert store.get_latest_open_time("BTCUSDT", "1h") == T0

    store.update_sync_status("BTCUSDT", "1h", T0)
    sql, params = cur.execute.call_args[0]
    assert "GREATEST" in sql and params == ("BTCUSDT", "1h", T0)


def test_pg_requires_dsn_or_conn():
    with pytest.raises(ValueError):
        PostgresCandleStore()


def test_parquet_upsert_is_idempotent_and_latest_wins(tmp_path):
    store = ParquetCandleStore(tmp_path)
    assert store.get_range("BTCUSDT", "1h") == []
    assert store.get_latest_open_time("BTCUSDT", "1h") is None

    store.upsert_many("BTCUSDT", "1h", series(T0, 3))
    store.upsert_many("BTCUSDT", "1h", [make_candle(T0 + H, 150.0), make_candle(T0 + 3 * H)])
    candles = store.get_range("BTCUSDT", "1h")
    assert [c.open_time for c in candles] == [T0 + i * H for i in range(4)]
    assert candles[1].close == 150.0
    assert store.get_latest_open_time("BTCUSDT", "1h") == T0 + 3 * H

    meta = json.loads(store.meta_path("BTCUSDT", "1h").read_text(encoding="utf-8"))
    assert meta["row_count"] == 4


def test_parquet_range_filters(tmp_path):
    store = ParquetCandleStore(tmp_path)
    store.upsert_many("BTCUSDT", "1h", series(T0, 10))
    assert [c.open_time for c in store.get_range("BTCUSDT", "1h", start=T0 + 2 * H, end=T0 + 4 * H)] == [
        T0 + 2 * H, T0 + 3 * H, T0 + 4 * H,
    ]
    assert [c.open_time for c in store.get_range("BTCUSDT", "1h", limit=2)] == [T0 + 8 * H, T0 + 9 * H]
    assert [c.open_time for c in store.get_range("BTCUSDT", "1h", start=T0, limit=2)] == [T0, T0 + H]

    out = store.export_csv("BTCUSDT", "1h", tmp_path / "out" / "btc.csv")
    assert out.read_text(encoding="utf-8").splitlines()[0].startswith("symbol,timeframe,open_time")



def test_parquet_zero_bounds_are_applied(tmp_path):
    store = ParquetCandleStore(tmp_path)
    store.upsert_many("BTCUSDT", "1h", series(0, 5))
    # start=0 取最早的 limit 根，而不是最近的
    assert [c.open_time for c in store.get_range("BTCUSDT", "1h", start=0, limit=2)] == [0, H]
    assert [c.open_time for c in store.get_range("BTCUSDT", "1h", end=0)] == [0]

def test_frame_conversion_preserves_fields():
    candles = series(T0, 2)
    df = candles_to_frame(candles)
    assert str(df["open_time"].dtype) == "int64"
    assert frame_to_candles(df) == candles
