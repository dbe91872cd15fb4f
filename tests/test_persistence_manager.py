"""
Unit tests for the ledger stores.

Tests:
- In-memory store ordering, filtering and signature idempotence
- Parquet store round trip through a temporary directory
- S3 store load/save sequence against a mocked client
"""
from datetime import datetime, timedelta, timezone
from io import BytesIO
from unittest.mock import MagicMock

import pandas as pd
import pytest
from botocore.exceptions import ClientError

from conftest import SOL, TOKEN_X, USDC
from solpnl.services.errors import LedgerStoreError
from solpnl.services.ledger import InMemoryTradeStore, ParquetTradeStore, S3TradeStore, TradeKind
from solpnl.services.ledger.persistence_manager import (
    _frame_to_parquet_bytes, entries_to_frame, frame_to_entries,
)


def client_error(code, operation='HeadObject'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


class TestInMemoryTradeStore:

    def test_insert_is_idempotent_on_signature(self, make_entry):
        store = InMemoryTradeStore()
        first = make_entry(USDC, SOL, "100", "1", "100", signature="sig")
        duplicate = make_entry(USDC, SOL, "999", "9", "999", signature="sig")

        assert store.insert_trade(first) is first
        assert store.insert_trade(duplicate) is first
        assert store.count_trades_by_wallet("w1") == 1

    def test_entries_without_signature_always_insert(self, make_entry):
        store = InMemoryTradeStore()
        store.insert_trade(make_entry(USDC, SOL, "1", "1", "1"))
        store.insert_trade(make_entry(USDC, SOL, "1", "1", "1"))

        assert store.count_trades_by_wallet("w1") == 2
        assert store.find_trade_by_signature("") is None

    def test_find_orders_by_time_and_filters(self, make_entry):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        late = make_entry(USDC, SOL, "1", "1", "1", executed_at=base + timedelta(days=2))
        early = make_entry(USDC, TOKEN_X, "1", "1", "1", executed_at=base,
                           kind=TradeKind.LIMIT_FILL)
        other = make_entry(USDC, SOL, "1", "1", "1", executed_at=base, wallet_id="w2")
        store = InMemoryTradeStore([late, early, other])

        assert store.find_trades_by_wallet("w1") == [early, late]
        assert store.find_trades_by_wallet("w1", newest_first=True) == [late, early]
        assert store.find_trades_by_wallet("w1", mint=SOL) == [late]
        assert store.find_trades_by_wallet("w1", kind="limit_fill") == [early]
        assert store.find_trades_by_wallet("w1", limit=1, offset=1) == [late]
        assert store.count_trades_by_wallet("w2") == 1


class TestFrameConversion:

    def test_round_trip_keeps_strings_and_nones(self, make_entry):
        entry = make_entry(USDC, SOL, "100.000001", "0.333333333", "100.000001", False,
                           signature="sig", input_symbol="USDC")

        restored = frame_to_entries(entries_to_frame([entry]))

        assert restored == [entry]
        assert restored[0].output_usd_value is None
        assert restored[0].output_symbol is None

    def test_missing_columns_are_rejected(self):
        with pytest.raises(LedgerStoreError, match="missing columns"):
            frame_to_entries(pd.DataFrame({'id': ['x']}))

    def test_empty_frame_gives_no_entries(self):
        assert frame_to_entries(entries_to_frame([])) == []


class TestParquetTradeStore:

    def test_round_trip(self, tmp_path, make_entry):
        path = tmp_path / "ledger" / "trades.parquet"
        entries = [
            make_entry(USDC, SOL, "100", "0.5", "100", signature="sig-1", output_symbol="SOL"),
            make_entry(SOL, USDC, "0.25", "60", "60", False),
        ]

        store = ParquetTradeStore(path)
        for entry in entries:
            store.insert_trade(entry)

        reopened = ParquetTradeStore(path)
        assert reopened.find_trades_by_wallet("w1") == entries
        assert reopened.find_trade_by_signature("sig-1") == entries[0]

    def test_backup_and_no_staging_left(self, tmp_path, make_entry):
        path = tmp_path / "trades.parquet"
        store = ParquetTradeStore(path)
        store.insert_trade(make_entry(USDC, SOL, "1", "1", "1"))
        store.insert_trade(make_entry(USDC, SOL, "2", "2", "2"))

        assert path.exists()
        assert (tmp_path / "trades.parquet.bak").exists()
        assert not (tmp_path / "trades.parquet.tmp").exists()

    def test_missing_file_is_empty_ledger(self, tmp_path):
        store = ParquetTradeStore(tmp_path / "absent.parquet")
        assert store.find_trades_by_wallet("w1") == []

    def test_corrupt_file_raises_store_error(self, tmp_path):
        path = tmp_path / "trades.parquet"
        path.write_bytes(b"not parquet")

        with pytest.raises(LedgerStoreError):
            ParquetTradeStore(path).find_trades_by_wallet("w1")


class TestS3TradeStore:

    def test_missing_key_loads_empty(self):
        s3 = MagicMock()
        s3.head_object.side_effect = client_error('404')

        store = S3TradeStore('bucket', prefix='pnl/', s3_client=s3)

        assert store.find_trades_by_wallet("w1") == []
        assert store.trades_key == 'pnl/trades.parquet'
        s3.get_object.assert_not_called()

    def test_load_existing_ledger(self, make_entry):
        entry = make_entry(USDC, SOL, "100", "0.5", "100", signature="sig-1")
        body = _frame_to_parquet_bytes(entries_to_frame([entry]))
        s3 = MagicMock()
        s3.get_object.return_value = {'Body': BytesIO(body)}

        store = S3TradeStore('bucket', s3_client=s3)

        assert store.find_trade_by_signature("sig-1") == entry
        s3.get_object.assert_called_once_with(Bucket='bucket', Key='solpnl/trades.parquet')

    def test_save_stages_then_promotes(self, make_entry):
        s3 = MagicMock()
        s3.head_object.side_effect = client_error('NoSuchKey')
        store = S3TradeStore('bucket', s3_client=s3)

        store.insert_trade(make_entry(USDC, SOL, "1", "1", "1"))

        put_kwargs = s3.put_object.call_args.kwargs
        assert put_kwargs['Key'] == 'solpnl/staging/trades.parquet'
        s3.copy_object.assert_called_once_with(
            Bucket='bucket',
            CopySource={'Bucket': 'bucket', 'Key': 'solpnl/staging/trades.parquet'},
            Key='solpnl/trades.parquet',
        )
        s3.delete_object.assert_called_once_with(Bucket='bucket', Key='solpnl/staging/trades.parquet')

    def test_save_backs_up_existing_ledger(self, make_entry):
        s3 = MagicMock()
        s3.get_object.return_value = {
            'Body': BytesIO(_frame_to_parquet_bytes(entries_to_frame([])))
        }
        store = S3TradeStore('bucket', s3_client=s3)

        store.insert_trade(make_entry(USDC, SOL, "1", "1", "1"))

        backup_call = s3.copy_object.call_args_list[0]
        assert backup_call.kwargs['Key'].startswith('solpnl/backups/')
        assert s3.copy_object.call_count == 2

    def test_access_denied_raises_store_error(self):
        s3 = MagicMock()
        s3.head_object.side_effect = client_error('403')

        with pytest.raises(LedgerStoreError):
            S3TradeStore('bucket', s3_client=s3).find_trades_by_wallet("w1")

    def test_failed_write_keeps_memory_unchanged(self, make_entry):
        s3 = MagicMock()
        s3.head_object.side_effect = client_error('404')
        s3.put_object.side_effect = client_error('500', 'PutObject')
        store = S3TradeStore('bucket', s3_client=s3)

        with pytest.raises(LedgerStoreError):
            store.insert_trade(make_entry(USDC, SOL, "1", "1", "1", signature="sig"))

        assert store.count_trades_by_wallet("w1") == 0
        assert store.find_trade_by_signature("sig") is None
