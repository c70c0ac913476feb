"""Per-table settings for the spreadsheet importer (restaurants, sponsors)."""

from __future__ import annotations

import math

from services.matching import abbreviation_bonus, normalize_name
from services.stats_service import recompute_user_stats


class ImportFileError(Exception):
    """The spreadsheet cannot be imported as a whole."""


def _cell(row, index):
    if index is None or index >= len(row):
        return None
    value = row[index]
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _to_float(value):
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


class ImportConfig:
    display_name = ''
    table_name = ''
    file_prefix = ''
    additional_backup_tables = ()
    # column with a UNIQUE constraint, checked before anything is written
    unique_field = None
    abbreviation_pairs = (('co', 'company'),)
    # (header text, field) in template column order
    columns = ()

    def normalize_name(self, name):
        return normalize_name(name)

    def abbreviation_bonus(self, new_name, existing_name):
        return abbreviation_bonus(new_name, existing_name, self.abbreviation_pairs)

    @property
    def fields(self):
        return [name for _, name in self.columns]

    def parse_rows(self, rows):
        raise NotImplementedError

    def describe(self, item):
        raise NotImplementedError

    def duplicate_key(self, item):
        raise NotImplementedError

    def prepare_update(self, item):
        return {name: item.get(name) for name in self.fields}

    def prepare_insert(self, item):
        return self.prepare_update(item)

    def cascade_delete(self, conn, ids):
        return None

    def post_import(self, conn, settings):
        return None


class RestaurantImportConfig(ImportConfig):
    display_name = 'Restaurant'
    table_name = 'restaurants'
    file_prefix = 'restaurant'
    additional_backup_tables = ('visits', 'user_stats')
    unique_field = 'code'
    columns = (
        ('Name', 'name'),
        ('Address', 'address'),
        ('Website URL', 'url'),
        ('Code', 'code'),
        ('Latitude', 'latitude'),
        ('Longitude', 'longitude'),
        ('Description', 'description'),
        ('Phone', 'phone'),
        ('Specials', 'specials'),
        ('Promotions', 'promotions'),
    )

    @staticmethod
    def map_header(header):
        h = header.lower().strip()
        if h == 'name':
            return 'name'
        if 'address' in h:
            return 'address'
        if 'url' in h or 'website' in h:
            return 'url'
        if 'code' in h:
            return 'code'
        if 'lat' in h:
            return 'latitude'
        if 'long' in h or 'lng' in h:
            return 'longitude'
        if 'desc' in h:
            return 'description'
        if 'phone' in h:
            return 'phone'
        if 'promotion' in h:
            return 'promotions'
        if 'special' in h:
            return 'specials'
        return None

    def parse_rows(self, rows):
        header_index = None
        for i, row in enumerate(rows[:10]):
            if any(isinstance(cell, str) and cell.strip().upper() == 'NAME' for cell in row or ()):
                header_index = i
                break
        if header_index is None:
            raise ImportFileError('Could not find header row with NAME column')

        column_map = {}
        for index, header in enumerate(rows[header_index]):
            if header is None:
                continue
            field = self.map_header(str(header))
            if field and field not in column_map:
                column_map[field] = index

        items, errors = [], []
        for i in range(header_index + 1, len(rows)):
            row = rows[i] or ()
            name = _cell(row, column_map.get('name'))
            if not name:
                continue
            row_number = i + 1
            item = {
                'name': name,
                'address': _cell(row, column_map.get('address')),
                'url': _cell(row, column_map.get('url')),
                'code': _cell(row, column_map.get('code')),
                'latitude': _to_float(_cell(row, column_map.get('latitude'))),
                'longitude': _to_float(_cell(row, column_map.get('longitude'))),
                'description': _cell(row, column_map.get('description')),
                'phone': _cell(row, column_map.get('phone')),
                'specials': _cell(row, column_map.get('specials')),
                'promotions': _cell(row, column_map.get('promotions')),
                '_row_number': row_number,
            }
            if not item['code'] or item['latitude'] is None or item['longitude'] is None:
                errors.append(f'Row {row_number}: missing required data (name, code, or coordinates)')
                continue
            items.append(item)
        return items, errors

    def describe(self, item):
        lines = [f"Address: {item.get('address')}", f"Code: {item.get('code')}"]
        for label, key in (('Phone', 'phone'), ('Specials', 'specials'), ('Promotions', 'promotions')):
            if item.get(key):
                lines.append(f'{label}: {item[key]}')
        return lines

    def duplicate_key(self, item):
        return f"{item['name'].lower()}-{item['code'].lower()}"

    def cascade_delete(self, conn, ids):
        placeholders = ','.join('?' for _ in ids)
        conn.execute(f'DELETE FROM visits WHERE restaurant_id IN ({placeholders})', list(ids))

    def post_import(self, conn, settings):
        return recompute_user_stats(conn, settings['VISITS_PER_RAFFLE_ENTRY'])


class SponsorImportConfig(ImportConfig):
    display_name = 'Sponsor'
    table_name = 'sponsors'
    file_prefix = 'sponsor'
    abbreviation_pairs = (('llc', 'limited liability company'), ('co', 'company'))
    columns = (
        ('Name*', 'name'),
        ('Address', 'address'),
        ('Latitude', 'latitude'),
        ('Longitude', 'longitude'),
        ('Phone', 'phone'),
        ('Website URL', 'url'),
        ('Description', 'description'),
        ('Promo Offer', 'promo_offer'),
        ('Is Retail', 'is_retail'),
        ('Logo Filename', 'logo_file'),
    )

    @staticmethod
    def map_header(header):
        h = header.lower().strip()
        if h in ('name*', 'name'):
            return 'name'
        if 'logo' in h or 'filename' in h:
            return 'logo_file'
        if 'address' in h:
            return 'address'
        if 'lat' in h:
            return 'latitude'
        if 'long' in h or 'lng' in h:
            return 'longitude'
        if 'phone' in h:
            return 'phone'
        if 'url' in h or 'website' in h:
            return 'url'
        if 'desc' in h:
            return 'description'
        if 'promo' in h or 'offer' in h:
            return 'promo_offer'
        if 'retail' in h:
            return 'is_retail'
        return None

    def parse_rows(self, rows):
        if not rows:
            raise ImportFileError('Spreadsheet appears to be empty or has no data rows')
        column_map = {}
        for index, header in enumerate(rows[0]):
            if header is None:
                continue
            field = self.map_header(str(header))
            if field and field not in column_map:
                column_map[field] = index

        missing = [col for col in ('name', 'address') if col not in column_map]
        if missing:
            raise ImportFileError(f"Missing required columns: {', '.join(missing)}")

        items, errors = [], []
        for offset, row in enumerate(rows[1:]):
            row = row or ()
            row_number = offset + 2
            name = _cell(row, column_map['name'])
            if not name:
                continue
            address = _cell(row, column_map['address'])
            if not address:
                errors.append(f'Row {row_number}: Missing name or address')
                continue
            url = _cell(row, column_map.get('url'))
            if url and not url.startswith('http'):
                url = 'https://' + url
            retail = _cell(row, column_map.get('is_retail'))
            items.append({
                'name': name,
                'address': address,
                'latitude': _to_float(_cell(row, column_map.get('latitude'))) or 0.0,
                'longitude': _to_float(_cell(row, column_map.get('longitude'))) or 0.0,
                'phone': _cell(row, column_map.get('phone')),
                'url': url,
                'description': _cell(row, column_map.get('description')),
                'promo_offer': _cell(row, column_map.get('promo_offer')),
                'is_retail': 1 if retail and retail.lower() in ('true', 'yes', 'y', '1') else 0,
                'logo_file': _cell(row, column_map.get('logo_file')),
                '_row_number': row_number,
            })
        return items, errors

    def describe(self, item):
        lines = [f"Address: {item.get('address')}"]
        if item.get('description'):
            lines.append(f"Description: {item['description']}")
        if item.get('logo_file'):
            lines.append(f"Logo: {item['logo_file']}")
        return lines

    def duplicate_key(self, item):
        return f"{item['name'].lower()}-{item['address'].lower()}"


IMPORT_CONFIGS = {
    'restaurants': RestaurantImportConfig(),
    'sponsors': SponsorImportConfig(),
}
