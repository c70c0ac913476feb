"""Interactive spreadsheet importer.

Reconciles a spreadsheet export of restaurants or sponsors with the rows
already in the database. Every incoming record is compared with the existing
rows by fuzzy name similarity:

* no candidate above the threshold - the record is added;
* an exact (case-insensitive) name match - the existing row is updated;
* anything else - the operator decides which rows to keep.

A JSON backup of the affected tables is written before anything is read
from the spreadsheet, and all changes are applied in one transaction.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from services.import_configs import ImportFileError
from services.matching import DEFAULT_THRESHOLD, Match, find_potential_matches, similarity
from services.spreadsheet import read_data_rows

logger = logging.getLogger(__name__)


def fetch_rows(conn, table):
    c = conn.cursor()
    c.execute(f'SELECT * FROM {table} ORDER BY rowid')  # table names come from ImportConfig only
    columns = [d[0] for d in c.description]
    return [dict(zip(columns, row)) for row in c.fetchall()]


class ConsolePrompter:
    """Prompts on stdin/stdout; swap in another object with the same methods for tests."""

    def __init__(self, input_func=input, out=print):
        self.input = input_func
        self.out = out

    def select(self, message, options):
        for i, option in enumerate(options, start=1):
            self.out(f'  {i}. {option}')
        while True:
            answer = self.input(f'{message} [1-{len(options)}]: ').strip()
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return int(answer) - 1
            self.out('  Please enter one of the listed numbers.')

    def choose_records(self, message, labels):
        letters = string.ascii_uppercase[:len(labels)]
        while True:
            answer = self.input(f'{message} (letters separated by spaces, e.g. "A C"): ')
            picked = [token.upper() for token in answer.replace(',', ' ').split()]
            if picked and all(token in letters for token in picked):
                return sorted({letters.index(token) for token in picked})
            self.out('  You must choose at least one of the listed letters.')

    def confirm(self, message, default=False):
        hint = 'Y/n' if default else 'y/N'
        answer = self.input(f'{message} ({hint}): ').strip().lower()
        if not answer:
            return default
        return answer in ('y', 'yes')


@dataclass
class ImportPlan:
    to_update: list = field(default_factory=list)  # (existing, incoming) pairs
    to_add: list = field(default_factory=list)
    to_remove: list = field(default_factory=list)

    @property
    def empty(self):
        return not (self.to_update or self.to_add or self.to_remove)


class SmartImporter:
    def __init__(self, config, conn, *, prompter=None, backup_dir='backups',
                 environment='development', settings=None, threshold=DEFAULT_THRESHOLD, out=print):
        self.config = config
        self.conn = conn
        self.prompter = prompter or ConsolePrompter(out=out)
        self.backup_dir = Path(backup_dir)
        self.environment = environment
        self.settings = settings or {}
        self.threshold = threshold
        self.out = out

    @property
    def noun(self):
        return self.config.display_name.lower()

    def select_file(self, data_dir):
        data_dir = Path(data_dir)
        prefix = self.config.file_prefix.lower()
        files = sorted(
            (p for p in data_dir.glob('*.xlsx') if p.name.lower().startswith(prefix)),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        if not files:
            raise ImportFileError(f'No {self.config.file_prefix}*.xlsx files found in {data_dir}')
        if len(files) == 1:
            self.out(f'Using file: {files[0].name}\n')
            return files[0]
        labels = [
            f"{p.name} ({datetime.fromtimestamp(p.stat().st_mtime).strftime('%Y-%m-%d %H:%M')})"
            for p in files
        ]
        return files[self.prompter.select('Which file would you like to import?', labels)]

    def create_backup(self):
        self.out('Creating automatic backup...')
        now = datetime.now(timezone.utc)
        data = {
            'environment': self.environment,
            'timestamp': now.isoformat(),
            self.config.table_name: fetch_rows(self.conn, self.config.table_name),
        }
        for table in self.config.additional_backup_tables:
            data[table] = fetch_rows(self.conn, table)

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path = self.backup_dir / (
            f'{self.environment}-{self.config.table_name}-pre-import-'
            f'{now.strftime("%Y-%m-%d")}-{int(now.timestamp() * 1000)}.json'
        )
        with open(path, 'w', encoding='utf-8') as fh:
            json.dump(data, fh, indent=2, default=str)
        self.out(f'   Backup saved: {path.name}\n')
        return path

    def load_items(self, path):
        sheet_name, rows = read_data_rows(path)
        self.out(f'Reading sheet: "{sheet_name}"')
        items, errors = self.config.parse_rows(rows)
        self.out(f'   Found {len(items)} {self.noun}s to import')

        if errors:
            self.out(f'\nWARNING: Found {len(errors)} error(s) in input file:')
            for error in errors:
                self.out(f'   - {error}')

        unique, seen, duplicates = [], set(), []
        for item in items:
            key = self.config.duplicate_key(item)
            if key in seen:
                duplicates.append(item)
                continue
            seen.add(key)
            unique.append(item)
        if duplicates:
            self.out(f'\nWARNING: Found {len(duplicates)} duplicate(s) in input file:')
            for item in duplicates:
                self.out(f'   - "{item["name"]}" appears multiple times')
            self.out('   Only the first occurrence will be processed.')

        field_name = self.config.unique_field
        if field_name:
            owners, kept = {}, []
            for item in unique:
                value = str(item[field_name]).lower()
                if value in owners:
                    self.out(
                        f'\nWARNING: Row {item.get("_row_number", "?")}: {field_name} "{item[field_name]}" '
                        f'is already used by "{owners[value]}" in this file; row skipped'
                    )
                    continue
                owners[value] = item['name']
                kept.append(item)
            unique = kept
        self.out('')
        return unique

    def _unique_owner(self, item, existing_items):
        """Existing row already holding the item's unique value, if any."""
        field_name = self.config.unique_field
        if not field_name or not item.get(field_name):
            return None
        value = str(item[field_name]).lower()
        for existing in existing_items:
            if str(existing.get(field_name) or '').lower() == value:
                return existing
        return None

    def unique_conflicts(self, plan, existing_items):
        """Planned writes whose unique value is still held by another row afterwards.

        Updates are checked before inserts, in plan order. Returns
        ``(entry, holder_name)`` pairs where entry is a ``to_update`` pair or a
        ``to_add`` item.
        """
        field_name = self.config.unique_field
        if not field_name:
            return []
        rewritten = {e['id'] for e in plan.to_remove} | {e['id'] for e, _ in plan.to_update}
        taken = {
            str(e[field_name]).lower(): e['name']
            for e in existing_items
            if e['id'] not in rewritten and e.get(field_name)
        }
        conflicts = []
        for entry in plan.to_update + plan.to_add:
            incoming = entry[1] if isinstance(entry, tuple) else entry
            value = str(incoming[field_name]).lower()
            if value in taken:
                conflicts.append((entry, taken[value]))
            else:
                taken[value] = incoming['name']
        return conflicts

    def drop_unique_conflicts(self, plan, existing_items):
        """Drop planned writes that would break the unique column; their existing rows stay as they are."""
        field_name = self.config.unique_field
        skipped = []
        while True:
            conflicts = self.unique_conflicts(plan, existing_items)
            if not conflicts:
                break
            # one at a time: a skipped update leaves its row holding the old value
            entry, holder = conflicts[0]
            incoming = entry[1] if isinstance(entry, tuple) else entry
            if isinstance(entry, tuple):
                plan.to_update = [pair for pair in plan.to_update if pair is not entry]
            else:
                plan.to_add = [item for item in plan.to_add if item is not entry]
            skipped.append((incoming, holder))
            self.out(
                f'WARNING: Row {incoming.get("_row_number", "?")}: {field_name} "{incoming[field_name]}" '
                f'would duplicate "{holder}"; "{incoming["name"]}" skipped'
            )
        return skipped

    def _show(self, item, indent='   '):
        for line in self.config.describe(item):
            self.out(f'{indent}{line}')

    def process_matches(self, new_items, existing_items):
        updates = {}   # existing id -> (existing, incoming)
        removals = {}  # existing id -> existing
        plan = ImportPlan()
        self.out(f'Processing {self.noun} matches...\n')

        for item in new_items:
            matches = find_potential_matches(item, existing_items, self.config, self.threshold)
            owner = self._unique_owner(item, existing_items)
            if owner is not None and not (matches and matches[0].exact_match) and all(
                m.item['id'] != owner['id'] for m in matches
            ):
                # a renamed row keeps its code; let the operator decide about the holder
                score = similarity(
                    self.config.normalize_name(item.get('name')),
                    self.config.normalize_name(owner.get('name')),
                )
                matches.append(Match(item=owner, exact_match=False, similarity=score, same_code=True))
            if not matches:
                plan.to_add.append(item)
                self.out(f'NEW: "{item["name"]}" - will be added')
                continue

            self.out(f'\nNEW {self.config.display_name.upper()}: "{item["name"]}"')
            self._show(item)

            if matches[0].exact_match:
                existing = matches[0].item
                self.out(f'   Exact match found: "{existing["name"]}"')
                self.out(f'   -> Will update existing {self.noun}\n')
                updates[existing['id']] = (existing, item)
                removals.pop(existing['id'], None)
                continue

            self.out(f'   Found similar {self.noun}s:')
            labels = []
            for letter, match in zip(string.ascii_uppercase, matches):
                reason = f'same {self.config.unique_field}' if match.same_code else f'{match.confidence} confidence'
                self.out(f'   {letter}. "{match.item["name"]}" (existing) - {reason}')
                self._show(match.item, '      ')
                labels.append(f'"{match.item["name"]}" (existing)')
            new_letter = string.ascii_uppercase[len(matches)]
            self.out(f'   {new_letter}. "{item["name"]}" (from file)')
            self._show(item, '      ')
            labels.append(f'"{item["name"]}" (from file)')

            chosen = self.prompter.choose_records(f'Which {self.noun}s do you want to keep?', labels)
            for index, match in enumerate(matches):
                existing = match.item
                if index in chosen:
                    updates[existing['id']] = (existing, item)
                    removals.pop(existing['id'], None)
                    self.out(f'   Keeping "{existing["name"]}" (will update with new data)')
                elif existing['id'] not in updates:
                    removals[existing['id']] = existing
                    self.out(f'   Will remove "{existing["name"]}" (not selected)')
            if len(matches) in chosen:
                plan.to_add.append(item)
                self.out(f'   Adding "{item["name"]}" as new {self.noun}')
            self.out('')

        plan.to_update = list(updates.values())
        plan.to_remove = list(removals.values())
        self.drop_unique_conflicts(plan, existing_items)

        touched = set(updates) | set(removals)
        untouched = [e for e in existing_items if e['id'] not in touched]
        if untouched:
            self.out(f'\n{len(untouched)} existing {self.noun}s had no similar matches and will be kept unchanged:')
            for existing in untouched[:3]:
                self.out(f'   - "{existing["name"]}"')
            if len(untouched) > 3:
                self.out(f'   ... and {len(untouched) - 3} more')
        return plan

    def show_summary(self, plan):
        self.out('\nIMPORT SUMMARY:\n')
        title = self.config.display_name.upper()
        sections = (
            (f'{title}S TO UPDATE', [f'"{e["name"]}" -> "{n["name"]}"' for e, n in plan.to_update]),
            (f'NEW {title}S TO ADD', [f'"{n["name"]}"' for n in plan.to_add]),
            (f'{title}S TO REMOVE', [f'"{e["name"]}"' for e in plan.to_remove]),
        )
        for heading, lines in sections:
            if not lines:
                continue
            self.out(f'{heading}: {len(lines)}')
            for line in lines[:3]:
                self.out(f'   - {line}')
            if len(lines) > 3:
                self.out(f'   ... and {len(lines) - 3} more')
            self.out('')

    def execute(self, plan):
        table = self.config.table_name
        fields = self.config.fields
        self.out('Executing import...\n')
        try:
            with self.conn:
                if plan.to_remove:
                    ids = [e['id'] for e in plan.to_remove]
                    self.config.cascade_delete(self.conn, ids)
                    placeholders = ','.join('?' for _ in ids)
                    self.conn.execute(f'DELETE FROM {table} WHERE id IN ({placeholders})', ids)
                    self.out(f'   Removed {len(ids)} {self.noun}s')

                assignments = ', '.join(f'{name} = ?' for name in fields)
                for existing, incoming in plan.to_update:
                    data = self.config.prepare_update(incoming)
                    self.conn.execute(
                        f'UPDATE {table} SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
                        [data[name] for name in fields] + [existing['id']],
                    )
                if plan.to_update:
                    self.out(f'   Updated {len(plan.to_update)} {self.noun}s')

                columns = ', '.join(fields)
                placeholders = ', '.join('?' for _ in fields)
                for incoming in plan.to_add:
                    data = self.config.prepare_insert(incoming)
                    self.conn.execute(
                        f'INSERT INTO {table} ({columns}) VALUES ({placeholders})',
                        [data[name] for name in fields],
                    )
                if plan.to_add:
                    self.out(f'   Added {len(plan.to_add)} {self.noun}s')

                self.config.post_import(self.conn, self.settings)
        except sqlite3.Error as exc:
            logger.exception('Import of %s failed', table)
            self.out(f'\nImport failed: {exc}')
            self.out('Nothing was changed; your backup is safe and can be restored if needed.')
            raise

        self.out('Import completed successfully!')
        self.out(f'   Updated: {len(plan.to_update)}  Added: {len(plan.to_add)}  Removed: {len(plan.to_remove)}')

    def run(self, data_dir=None, path=None, assume_yes=False):
        path = Path(path) if path else self.select_file(data_dir or os.curdir)
        self.create_backup()
        new_items = self.load_items(path)
        existing = fetch_rows(self.conn, self.config.table_name)

        plan = self.process_matches(new_items, existing)
        self.show_summary(plan)
        if plan.empty:
            self.out('Nothing to import.')
            return plan
        if not assume_yes and not self.prompter.confirm('Proceed with import?', default=False):
            self.out('Import cancelled')
            return None
        self.execute(plan)
        return plan
