"""
Dense evaluation matrix built from sparse evaluation cells.

A row is a plain dict per item:

    {'item_key': ..., 'label': ..., 'description': ...,
     'self_<staff id>': score or None, 'mgr_<staff id>': score or None}

Every row carries both perspectives for every known staff member; which
perspective is editable is a view-level choice (see build_staff_columns).
"""

import re

from config import MANAGER_ROLE

PERSPECTIVES = ('self', 'mgr')

_FIELD_RE = re.compile(r'^(self|mgr)_(.+)$')


def score_field(perspective, staff_id):
    return f"{perspective}_{staff_id}"


def parse_field(field):
    """Split a score field name into (perspective, staff_id), or (None, None)."""
    m = _FIELD_RE.match(field or '')
    if not m:
        return None, None
    return m.group(1), m.group(2)


def perspective_for_role(evaluator_role, manager_role=MANAGER_ROLE):
    """Only the manager role maps to 'mgr'; any other role string is 'self'."""
    return 'mgr' if evaluator_role == manager_role else 'self'


def blank_row(item, staff):
    """A row for item with every score field unset."""
    row = {
        'item_key': item['item_key'],
        'label': item.get('label') or '',
        'description': item.get('description') or '',
    }
    for member in staff:
        row[score_field('self', member['id'])] = None
        row[score_field('mgr', member['id'])] = None
    return row


def build_rows(items, staff, cells, manager_role=MANAGER_ROLE):
    """
    Project (items, staff, evaluation cells) onto dense rows in item order.

    Cells whose item_key matches no item are skipped; stale data from the
    server is not an error.
    """
    rows = [blank_row(item, staff) for item in items]
    by_key = {row['item_key']: row for row in rows}
    for cell in cells:
        row = by_key.get(cell.get('item_key'))
        if row is None:
            continue
        prefix = perspective_for_role(cell.get('evaluator_role'), manager_role)
        row[score_field(prefix, cell['staff_id'])] = cell.get('score')
    return rows


def build_staff_columns(staff, perspective):
    """Ordered score-field names for the selected perspective only."""
    if perspective not in PERSPECTIVES:
        raise ValueError(f"Unknown perspective: {perspective!r}")
    return [score_field(perspective, member['id']) for member in staff]


def scoreboard(rows, staff, perspective):
    """Per-staff totals for one perspective, highest first."""
    board = []
    for member in staff:
        field = score_field(perspective, member['id'])
        total = 0
        for row in rows:
            value = row.get(field)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                total += value
        board.append({'staff_id': member['id'], 'name': member['name'], 'total': total})
    # sorted() is stable, so ties keep staff order
    return sorted(board, key=lambda entry: entry['total'], reverse=True)


def max_total(template, item_count):
    """Highest reachable total per staff member; 0 without a template."""
    if not template:
        return 0
    return (template.get('max_score') or 0) * item_count
