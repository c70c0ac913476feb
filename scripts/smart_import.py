#!/usr/bin/env python3
"""Import restaurants or sponsors from an .xlsx workbook, reviewing fuzzy name matches."""

from __future__ import annotations

import argparse
import logging
import sqlite3

from config import Config
from services.import_configs import IMPORT_CONFIGS, ImportFileError
from services.matching import DEFAULT_THRESHOLD
from services.smart_importer import SmartImporter


def main(argv=None):
    parser = argparse.ArgumentParser(description='Smart spreadsheet import')
    parser.add_argument('kind', choices=sorted(IMPORT_CONFIGS))
    parser.add_argument('--file', help='workbook to import (default: newest matching file in --dir)')
    parser.add_argument('--dir', default=Config.IMPORT_DATA_DIR)
    parser.add_argument('--threshold', type=float, default=DEFAULT_THRESHOLD)
    parser.add_argument('--db', default=Config.DATABASE_PATH, help='database to import into')
    parser.add_argument('--env', default=Config.APP_ENV, help='environment label used in backup names')
    parser.add_argument('--yes', action='store_true', help='apply without the final confirmation')
    args = parser.parse_args(argv)

    logging.basicConfig(level=Config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s %(message)s')

    print(f'Importing {args.kind} into {args.db} ({args.env})\n')
    conn = sqlite3.connect(args.db)
    conn.execute('PRAGMA foreign_keys = ON')
    importer = SmartImporter(
        IMPORT_CONFIGS[args.kind],
        conn,
        backup_dir=Config.BACKUP_DIR,
        environment=args.env,
        settings={'VISITS_PER_RAFFLE_ENTRY': Config.VISITS_PER_RAFFLE_ENTRY},
        threshold=args.threshold,
    )
    try:
        importer.run(data_dir=args.dir, path=args.file, assume_yes=args.yes)
    except ImportFileError as exc:
        print(f'Error: {exc}')
        return 1
    except sqlite3.Error as exc:
        logging.getLogger(__name__).error('Import of %s failed: %s', args.kind, exc)
        print(f'Import aborted: {exc}')
        return 1
    finally:
        conn.close()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
