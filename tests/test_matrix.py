import pytest

from matrix import (
    blank_row, build_rows, build_staff_columns, max_total, parse_field,
    scoreboard,
)

ITEMS = [
    {'item_key': 'a', 'label': 'A', 'description': 'first'},
    {'item_key': 'b', 'label': 'B', 'description': ''},
]
STAFF = [{'id': 's1', 'name': 'Aiko'}, {'id': 's2', 'name': 'Ben'}]


def cell(staff_id, item_key, score, role='自己'):
    return {'period': '2026-10', 'evaluator_role': role, 'staff_id': staff_id,
            'item_key': item_key, 'score': score}


def test_rows_are_dense_and_in_item_order():
    rows = build_rows(ITEMS, STAFF, [])
    assert [r['item_key'] for r in rows] == ['a', 'b']
    for row in rows:
        for field in ('self_s1', 'mgr_s1', 'self_s2', 'mgr_s2'):
            assert field in row and row[field] is None


def test_manager_role_maps_to_mgr_everything_else_to_self():
    cells = [
        cell('s1', 'a', 4, role='園長'),
        cell('s1', 'a', 2, role='自己'),
        cell('s2', 'b', 1, role='anything else'),
    ]
    rows = build_rows(ITEMS, STAFF, cells)
    assert rows[0]['mgr_s1'] == 4
    assert rows[0]['self_s1'] == 2
    assert rows[1]['self_s2'] == 1
    assert rows[1]['mgr_s2'] is None


def test_cells_for_unknown_items_are_dropped():
    rows = build_rows(ITEMS, STAFF, [cell('s1', 'missing', 5)])
    assert all(row['self_s1'] is None for row in rows)
    assert len(rows) == 2


def test_build_rows_is_idempotent():
    cells = [cell('s1', 'a', 3), cell('s2', 'b', 5, role='園長')]
    assert build_rows(ITEMS, STAFF, cells) == build_rows(ITEMS, STAFF, cells)


def test_staff_columns_follow_perspective():
    assert build_staff_columns(STAFF, 'self') == ['self_s1', 'self_s2']
    assert build_staff_columns(STAFF, 'mgr') == ['mgr_s1', 'mgr_s2']
    with pytest.raises(ValueError):
        build_staff_columns(STAFF, 'peer')


def test_parse_field():
    assert parse_field('self_s1') == ('self', 's1')
    assert parse_field('mgr_abc_def') == ('mgr', 'abc_def')
    assert parse_field('label') == (None, None)
    assert parse_field(None) == (None, None)


def test_blank_row_defaults_missing_text():
    row = blank_row({'item_key': 'x'}, STAFF)
    assert row['label'] == '' and row['description'] == ''


def test_scoreboard_sorts_totals_for_one_perspective():
    cells = [
        cell('s1', 'a', 1), cell('s2', 'a', 3), cell('s2', 'b', 2),
        cell('s1', 'b', 5, role='園長'),
    ]
    rows = build_rows(ITEMS, STAFF, cells)
    board = scoreboard(rows, STAFF, 'self')
    assert [(e['name'], e['total']) for e in board] == [('Ben', 5), ('Aiko', 1)]
    assert scoreboard(rows, STAFF, 'mgr')[0] == {'staff_id': 's1', 'name': 'Aiko', 'total': 5}


def test_max_total():
    assert max_total({'max_score': 5}, 4) == 20
    assert max_total(None, 4) == 0
