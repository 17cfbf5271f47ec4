"""
Spreadsheet export/import of the evaluation matrix.

Layout of the 'scores' sheet:

    item_key | label | description | self_<name> ... | mgr_<name> ...

All self columns come before all mgr columns, one per staff member, named
by staff name. Unset scores are empty cells, never 0.

Import is best-effort: columns are found by header name, rows without an
item_key are skipped and score cells that are not numbers are skipped
one by one. Nothing is persisted here; the caller applies the result.
"""

import csv
import io
import logging
import math
import os
import zipfile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from errors import ImportParseError

log = logging.getLogger(__name__)

SHEET_TITLE = 'scores'
XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
BASE_COLUMNS = ['item_key', 'label', 'description']
PREFIXES = (('self_', 'self'), ('mgr_', 'mgr'))


def _cell_str(val):
    """Convert cell value to stripped string."""
    if val is None:
        return ''
    return str(val).strip()


# ── Export ──

def export_header(staff):
    return (
        BASE_COLUMNS
        + [f"self_{s['name']}" for s in staff]
        + [f"mgr_{s['name']}" for s in staff]
    )


def export_table(items, staff, rows):
    """Header plus one list per item, in item order."""
    row_by_key = {row['item_key']: row for row in rows}
    table = [export_header(staff)]
    for item in items:
        row = row_by_key.get(item['item_key'], {})
        record = [item['item_key'], item.get('label') or '', item.get('description') or '']
        for prefix in ('self', 'mgr'):
            for s in staff:
                record.append(row.get(f"{prefix}_{s['id']}"))
        table.append(record)
    return table


def export_xlsx(items, staff, rows):
    """Build the workbook and return it as bytes."""
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    for record in export_table(items, staff, rows):
        ws.append(record)
        # text starting with "=" would otherwise be stored as a formula
        for cell in ws[ws.max_row]:
            if isinstance(cell.value, str):
                cell.data_type = 's'
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_xlsx_file(items, staff, rows, output_path):
    with open(output_path, 'wb') as f:
        f.write(export_xlsx(items, staff, rows))


# ── Import ──

def _score_value(raw):
    """Numeric value of a score cell, or None for blank/non-numeric cells."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        n = raw
    else:
        text = _cell_str(raw)
        if not text:
            return None
        try:
            n = float(text)
        except ValueError:
            return None
    if not math.isfinite(n):
        return None
    if isinstance(n, float) and n.is_integer():
        return int(n)
    return n


def _classify_header(name):
    for prefix, perspective in PREFIXES:
        if name.startswith(prefix):
            return perspective, name[len(prefix):]
    return None, None


def parse_table(table):
    """
    Turn a header-first table (list of lists) into
    {'items': [...], 'evaluations': [{'staff_name', 'perspective', 'scores'}]}.
    """
    result = {'template_meta': {}, 'items': [], 'evaluations': []}
    if not table:
        return result

    header = [_cell_str(c) for c in table[0]]

    def index_of(name):
        return header.index(name) if name in header else None

    idx_key = index_of('item_key')
    idx_label = index_of('label')
    idx_desc = index_of('description')
    score_cols = []
    for ci, name in enumerate(header):
        perspective, staff_name = _classify_header(name)
        if perspective:
            score_cols.append((ci, perspective, staff_name))

    def cell(row, ci):
        if ci is None or ci >= len(row):
            return None
        return row[ci]

    seen_keys = set()
    evaluations = {}
    skipped = 0
    for row in table[1:]:
        row = list(row or [])
        item_key = _cell_str(cell(row, idx_key))
        if not item_key:
            continue
        if item_key not in seen_keys:
            seen_keys.add(item_key)
            result['items'].append({
                'item_key': item_key,
                'label': _cell_str(cell(row, idx_label)),
                'description': _cell_str(cell(row, idx_desc)),
            })
        for ci, perspective, staff_name in score_cols:
            raw = cell(row, ci)
            score = _score_value(raw)
            if score is None:
                if _cell_str(raw):
                    skipped += 1
                continue
            entry = evaluations.get((perspective, staff_name))
            if entry is None:
                entry = {'staff_name': staff_name, 'perspective': perspective, 'scores': {}}
                evaluations[(perspective, staff_name)] = entry
            entry['scores'][item_key] = score

    if skipped:
        log.info("import skipped %d non-numeric score cells", skipped)
    result['evaluations'] = list(evaluations.values())
    return result


def _load_xlsx_rows(data):
    try:
        wb = load_workbook(io.BytesIO(data), data_only=True, read_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ImportParseError(f"Not a readable workbook: {e}") from e
    try:
        if not wb.worksheets:
            return []
        ws = wb.worksheets[0]
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _load_csv_rows(data):
    """Decode CSV bytes, trying encodings in order of likelihood."""
    for encoding in ['utf-8-sig', 'utf-8', 'cp1252', 'latin-1']:
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError:
            continue
        sample = text[:4096]
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=',;\t|')
        except csv.Error:
            dialect = csv.excel
        return [row for row in csv.reader(io.StringIO(text), dialect)]
    raise ImportParseError("Could not read CSV file with any supported encoding")


def import_xlsx(data):
    """Parse an .xlsx byte buffer (first sheet)."""
    return parse_table(_load_xlsx_rows(data))


def import_csv(data):
    return parse_table(_load_csv_rows(data))


def import_file(data, filename):
    """Dispatch on file extension (.xlsx/.xlsm or .csv)."""
    ext = os.path.splitext(filename or '')[1].lower()
    if ext == '.csv':
        return import_csv(data)
    if ext in ('.xlsx', '.xlsm', ''):
        return import_xlsx(data)
    raise ImportParseError(f"Unsupported file type: {ext}")
