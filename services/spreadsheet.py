"""Read and write the import workbooks (sheet 1 instructions, sheet 2 data)."""

from __future__ import annotations

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, PatternFill

from services.import_configs import ImportFileError

DATA_SHEET_INDEX = 1

HEADER_FONT = Font(bold=True, color='FFFFFF')
HEADER_FILL = PatternFill('solid', fgColor='1E3A8A')


def read_data_rows(path):
    """Rows of the data sheet as tuples of cell values."""
    wb = load_workbook(path, read_only=True, data_only=True)
    try:
        if len(wb.sheetnames) <= DATA_SHEET_INDEX:
            raise ImportFileError(
                'Could not find data sheet (sheet 2). Make sure your file has at least 2 sheets.'
            )
        sheet_name = wb.sheetnames[DATA_SHEET_INDEX]
        rows = [tuple(row) for row in wb[sheet_name].iter_rows(values_only=True)]
    finally:
        wb.close()
    if len(rows) < 2:
        raise ImportFileError('Spreadsheet appears to be empty or has no data rows')
    return sheet_name, rows


def _instructions(config):
    required = {
        'restaurants': 'Name, Code, Latitude and Longitude are required.',
        'sponsors': 'Name and Address are required.',
    }.get(config.table_name, '')
    return [
        (f'{config.display_name} import template',),
        ('',),
        ('Fill in one row per record on the second sheet. Do not rename the header row.',),
        (required,),
        ('Rows whose name closely matches an existing record will be reviewed before import.',),
        ('Blank rows are ignored.',),
    ]


def write_template(config, path, rows=None):
    """Write an import workbook; ``rows`` (dicts) pre-fill it as an export."""
    wb = Workbook()
    ws = wb.active
    ws.title = 'Instructions'
    for line in _instructions(config):
        ws.append(line)
    ws['A1'].font = Font(bold=True, size=14)
    ws.column_dimensions['A'].width = 90

    data = wb.create_sheet(f'{config.display_name}s')
    data.append([header for header, _ in config.columns])
    for cell in data[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
    for row in rows or []:
        data.append([row.get(field) for field in config.fields])

    for col_cells in data.columns:
        max_len = max((len(str(cell.value or '')) for cell in col_cells), default=10)
        data.column_dimensions[col_cells[0].column_letter].width = min(max_len + 2, 50)

    wb.save(path)
    return path
