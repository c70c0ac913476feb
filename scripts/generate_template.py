#!/usr/bin/env python3
"""Write a blank (or pre-filled) import workbook for restaurants or sponsors."""

from __future__ import annotations

import argparse
import sqlite3
from datetime import datetime
from pathlib import Path

from config import Config
from services.import_configs import IMPORT_CONFIGS
from services.smart_importer import fetch_rows
from services.spreadsheet import write_template


def generate_template(kind, output=None, with_data=False, db_path=None):
    config = IMPORT_CONFIGS[kind]
    rows = None
    if with_data:
        conn = sqlite3.connect(db_path or Config.DATABASE_PATH)
        try:
            rows = fetch_rows(conn, config.table_name)
        finally:
            conn.close()

    if output is None:
        stamp = datetime.now().strftime('%Y%m%d')
        output = Path(Config.IMPORT_DATA_DIR) / f'{config.file_prefix}s_{stamp}.xlsx'
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    write_template(config, output, rows)
    print(f'template_created={output}')
    return output


def main(argv=None):
    parser = argparse.ArgumentParser(description='Generate an import template')
    parser.add_argument('kind', choices=sorted(IMPORT_CONFIGS))
    parser.add_argument('--with-data', action='store_true', help='pre-fill with the current database rows')
    parser.add_argument('--output')
    args = parser.parse_args(argv)
    generate_template(args.kind, args.output, args.with_data)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
