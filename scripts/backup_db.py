#!/usr/bin/env python3
"""Backup SQLite DB locally (gzip snapshot + JSON dump) and optionally upload to S3."""

from __future__ import annotations

import gzip
import json
import os
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import boto3

BACKUP_TABLES = ('users', 'restaurants', 'sponsors', 'visits', 'user_stats')


def dump_tables(conn, tables=BACKUP_TABLES):
    """Plain-JSON copy of each table, readable without sqlite."""
    data = {}
    cur = conn.cursor()
    for table in tables:
        cur.execute(f'SELECT * FROM {table}')
        columns = [d[0] for d in cur.description]
        data[table] = [dict(zip(columns, row)) for row in cur.fetchall()]
    return data


def prune_backups(backup_dir: Path, keep: int):
    """Delete all but the newest ``keep`` backup sets; returns removed paths."""
    removed = []
    for pattern in ('bingo_*.sqlite3.gz', 'bingo_*.json'):
        files = sorted(backup_dir.glob(pattern), key=lambda p: p.name, reverse=True)
        for stale in files[keep:]:
            stale.unlink()
            removed.append(stale)
    return removed


def backup_database(db_path=None, backup_dir=None, keep=None, bucket=None):
    db_path = Path(db_path or os.environ.get('DATABASE_PATH', 'bingo.db'))
    backup_dir = Path(backup_dir or os.environ.get('BACKUP_DIR', 'backups'))
    keep = int(keep if keep is not None else os.environ.get('BACKUP_KEEP', '10'))
    bucket = bucket if bucket is not None else os.environ.get('S3_BACKUP_BUCKET')
    if not db_path.exists():
        raise FileNotFoundError(f'Database not found: {db_path}')
    backup_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S%fZ')
    raw_backup = backup_dir / f'bingo_{ts}.sqlite3'
    gz_backup = Path(str(raw_backup) + '.gz')
    json_backup = backup_dir / f'bingo_{ts}.json'

    conn = sqlite3.connect(str(db_path))
    out = sqlite3.connect(str(raw_backup))
    with out:
        conn.backup(out)
    out.close()
    data = dump_tables(conn)
    conn.close()

    with open(raw_backup, 'rb') as src, gzip.open(gz_backup, 'wb') as dst:
        shutil.copyfileobj(src, dst)
    raw_backup.unlink(missing_ok=True)

    with open(json_backup, 'w', encoding='utf-8') as fh:
        json.dump({'timestamp': ts, 'tables': data}, fh, indent=2, default=str)

    if bucket:
        s3 = boto3.client('s3', region_name=os.environ.get('AWS_REGION'))
        s3.upload_file(str(gz_backup), bucket, gz_backup.name)
        s3.upload_file(str(json_backup), bucket, json_backup.name)

    removed = prune_backups(backup_dir, keep)

    print(f'backup_created={gz_backup}')
    print(f'json_dump={json_backup}')
    if removed:
        print(f'pruned={len(removed)}')
    return gz_backup, json_backup


if __name__ == '__main__':
    backup_database()
