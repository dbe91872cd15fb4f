"""
Ledger Persistence

Parquet-backed trade stores: one on the local filesystem and one on S3.
Both keep every amount and USD figure as a string column so the ledger
round-trips without float conversion, and both stage a write before
promoting it over the live file.
"""

import logging
import os
import shutil
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any, List, Optional, Union

import boto3
import pandas as pd
from botocore.exceptions import ClientError

from ..errors import LedgerStoreError
from .models import LEDGER_COLUMNS, TradeLedgerEntry
from .store import TradeStore

logger = logging.getLogger(__name__)

TRADES_FILENAME = "trades.parquet"


def entries_to_frame(entries: List[TradeLedgerEntry]) -> pd.DataFrame:
    """Convert ledger entries to a DataFrame with string-typed numeric columns."""
    df = pd.DataFrame([e.to_dict() for e in entries], columns=LEDGER_COLUMNS)
    df['executed_at'] = pd.to_datetime(df['executed_at'], utc=True)
    for column in LEDGER_COLUMNS:
        if column != 'executed_at':
            df[column] = df[column].astype(object)
    return df


def frame_to_entries(df: pd.DataFrame) -> List[TradeLedgerEntry]:
    if df.empty:
        return []
    missing = set(LEDGER_COLUMNS) - set(df.columns)
    if missing:
        raise LedgerStoreError(f"Ledger file is missing columns: {sorted(missing)}")
    df = df[LEDGER_COLUMNS].copy()
    df['executed_at'] = pd.to_datetime(df['executed_at'], utc=True)
    # Missing values come back as NaN or NA depending on the string dtype in use
    records = df.astype(object).where(df.notna(), None).to_dict('records')
    return [TradeLedgerEntry.from_dict(row) for row in records]


def _frame_to_parquet_bytes(df: pd.DataFrame) -> bytes:
    buffer = BytesIO()
    df.to_parquet(buffer, index=False)
    return buffer.getvalue()


class ParquetTradeStore(TradeStore):
    """Ledger kept in a single Parquet file on local disk."""

    def __init__(self, path: Union[str, Path], keep_backup: bool = True):
        super().__init__()
        self.path = Path(path).expanduser()
        self.keep_backup = keep_backup

    def _load_entries(self) -> List[TradeLedgerEntry]:
        if not self.path.exists():
            logger.info(f"No existing ledger at {self.path}")
            return []
        try:
            df = pd.read_parquet(self.path)
        except Exception as e:
            logger.error(f"Failed to load ledger from {self.path}: {e}")
            raise LedgerStoreError(f"Cannot read ledger {self.path}: {e}") from e

        entries = frame_to_entries(df)
        logger.debug(f"Loaded {len(entries)} ledger entries from {self.path}")
        return entries

    def _save_entries(self, entries: List[TradeLedgerEntry]) -> None:
        staging = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            staging.write_bytes(_frame_to_parquet_bytes(entries_to_frame(entries)))
            if self.keep_backup and self.path.exists():
                shutil.copy2(self.path, self.path.with_name(self.path.name + ".bak"))
            # Atomic move from staging to live file
            os.replace(staging, self.path)
        except OSError as e:
            logger.error(f"Failed to save ledger to {self.path}: {e}")
            raise LedgerStoreError(f"Cannot write ledger {self.path}: {e}") from e
        finally:
            if staging.exists():
                staging.unlink()

        logger.debug(f"Saved {len(entries)} ledger entries to {self.path}")


class S3TradeStore(TradeStore):
    """
    Ledger kept as a Parquet object on S3, with timestamped backups and a
    staged write (put to staging key, copy over live key, delete staging).
    """

    def __init__(self, bucket: str, prefix: str = "solpnl", s3_client: Optional[Any] = None,
                 create_backup: bool = True):
        super().__init__()
        self.bucket = bucket
        self.s3_client = s3_client or boto3.client('s3')
        self.create_backup = create_backup

        prefix = prefix.strip('/')
        self.trades_key = f"{prefix}/{TRADES_FILENAME}"
        self.staging_key = f"{prefix}/staging/{TRADES_FILENAME}"
        self.backup_prefix = f"{prefix}/backups"

        logger.info(f"Initialized S3 ledger store at s3://{bucket}/{self.trades_key}")

    def _s3_key_exists(self, key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('404', 'NoSuchKey', 'NotFound'):
                return False
            logger.error(f"Error checking S3 key {key}: {e}")
            raise LedgerStoreError(f"Cannot reach s3://{self.bucket}/{key}: {e}") from e

    def _load_entries(self) -> List[TradeLedgerEntry]:
        if not self._s3_key_exists(self.trades_key):
            logger.info(f"No existing ledger at s3://{self.bucket}/{self.trades_key}")
            return []
        try:
            obj = self.s3_client.get_object(Bucket=self.bucket, Key=self.trades_key)
            df = pd.read_parquet(BytesIO(obj['Body'].read()))
        except ClientError as e:
            logger.error(f"Failed to load ledger from S3: {e}")
            raise LedgerStoreError(f"Cannot read s3://{self.bucket}/{self.trades_key}: {e}") from e

        entries = frame_to_entries(df)
        logger.info(f"Loaded {len(entries)} ledger entries from S3")
        return entries

    def _backup_current(self) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
        backup_key = f"{self.backup_prefix}/{timestamp}/{TRADES_FILENAME}"
        self.s3_client.copy_object(
            Bucket=self.bucket,
            CopySource={'Bucket': self.bucket, 'Key': self.trades_key},
            Key=backup_key,
        )
        logger.debug(f"Created ledger backup at {backup_key}")
        return backup_key

    def _save_entries(self, entries: List[TradeLedgerEntry]) -> None:
        body = _frame_to_parquet_bytes(entries_to_frame(entries))
        try:
            if self.create_backup and self._s3_key_exists(self.trades_key):
                self._backup_current()

            # Stage the data first
            self.s3_client.put_object(Bucket=self.bucket, Key=self.staging_key, Body=body)

            # Move from staging to production
            self.s3_client.copy_object(
                Bucket=self.bucket,
                CopySource={'Bucket': self.bucket, 'Key': self.staging_key},
                Key=self.trades_key,
            )
            self.s3_client.delete_object(Bucket=self.bucket, Key=self.staging_key)
        except ClientError as e:
            logger.error(f"Failed to save ledger to S3: {e}")
            raise LedgerStoreError(f"Cannot write s3://{self.bucket}/{self.trades_key}: {e}") from e

        logger.info(f"Saved {len(entries)} ledger entries to S3")
