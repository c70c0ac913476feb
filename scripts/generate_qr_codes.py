#!/usr/bin/env python3
"""Write one QR PNG per restaurant, plus an optional printable PDF sheet."""

from __future__ import annotations

import argparse
import sqlite3
from pathlib import Path

from config import Config
from qr_sheet import generate_qr_sheet
from services.qr_service import generate_qr_png, qr_filename, qr_payload


def load_restaurants(conn):
    cur = conn.cursor()
    cur.execute('SELECT id, name, code FROM restaurants ORDER BY name COLLATE NOCASE')
    return [{'id': row[0], 'name': row[1], 'code': row[2]} for row in cur.fetchall()]


def generate_qr_codes(restaurants, out_dir, base_url=None, pdf=False, event_name='Restaurant Week'):
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for restaurant in restaurants:
        path = out_dir / qr_filename(restaurant['name'])
        path.write_bytes(generate_qr_png(qr_payload(restaurant['code'], base_url)))
        written.append(path)
        print(f"{restaurant['name']}: {path.name}")

    if pdf:
        sheet = out_dir / 'qr_codes.pdf'
        sheet.write_bytes(generate_qr_sheet(restaurants, event_name=event_name, base_url=base_url).getvalue())
        written.append(sheet)
        print(f'pdf_created={sheet}')
    return written


def main(argv=None):
    parser = argparse.ArgumentParser(description='Generate restaurant QR codes')
    parser.add_argument('--out-dir', default='qr-codes')
    parser.add_argument('--pdf', action='store_true', help='also write a printable sheet')
    parser.add_argument('--base-url', default=Config.PUBLIC_BASE_URL)
    args = parser.parse_args(argv)

    conn = sqlite3.connect(Config.DATABASE_PATH)
    try:
        restaurants = load_restaurants(conn)
    finally:
        conn.close()
    if not restaurants:
        print('No restaurants found.')
        return 1
    generate_qr_codes(restaurants, args.out_dir, args.base_url, args.pdf, Config.EVENT_NAME)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
