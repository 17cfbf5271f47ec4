import io

import pytest
from openpyxl import Workbook, load_workbook

from errors import ImportParseError
from matrix import build_rows
from xlsx_io import export_table, export_xlsx, import_csv, import_file, import_xlsx

ITEMS = [
    {'item_key': 'teamwork', 'label': 'Teamwork', 'description': 'Works with others'},
    {'item_key': 'safety', 'label': 'Safety', 'description': ''},
]
STAFF = [{'id': 's1', 'name': 'Aiko'}, {'id': 's2', 'name': 'Ben'}]
CELLS = [
    {'evaluator_role': '自己', 'staff_id': 's1', 'item_key': 'teamwork', 'score': 3},
    {'evaluator_role': '園長', 'staff_id': 's2', 'item_key': 'safety', 'score': 4.5},
]


def workbook_bytes(table):
    wb = Workbook()
    ws = wb.active
    for row in table:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_export_header_puts_all_self_columns_before_mgr():
    table = export_table(ITEMS, STAFF, build_rows(ITEMS, STAFF, CELLS))
    assert table[0] == [
        'item_key', 'label', 'description',
        'self_Aiko', 'self_Ben', 'mgr_Aiko', 'mgr_Ben',
    ]
    assert table[1] == ['teamwork', 'Teamwork', 'Works with others', 3, None, None, None]


def test_exported_workbook_leaves_missing_scores_empty():
    data = export_xlsx(ITEMS, STAFF, build_rows(ITEMS, STAFF, CELLS))
    ws = load_workbook(io.BytesIO(data)).active
    assert ws.title == 'scores'
    assert ws.cell(row=3, column=4).value is None
    assert ws.cell(row=3, column=7).value == 4.5


def test_export_then_import_round_trip():
    data = export_xlsx(ITEMS, STAFF, build_rows(ITEMS, STAFF, CELLS))
    result = import_xlsx(data)
    assert result['items'] == ITEMS
    assert sorted(
        (e['perspective'], e['staff_name'], e['scores']) for e in result['evaluations']
    ) == [('mgr', 'Ben', {'safety': 4.5}), ('self', 'Aiko', {'teamwork': 3})]


def test_empty_matrix_round_trip():
    result = import_xlsx(export_xlsx([], [], []))
    assert result['items'] == []
    assert result['evaluations'] == []


def test_import_finds_columns_by_name_and_skips_bad_cells():
    data = workbook_bytes([
        ['mgr_Ben', 'description', 'label', 'notes', 'item_key', 'self_Ben'],
        [4, 'first', 'A', 'ignored', 'a', 'n/a'],
        [2, 'orphan', 'B', '', None, 1],
        ['3', '', 'C', '', 'c', ''],
    ])
    result = import_xlsx(data)
    assert result['items'] == [
        {'item_key': 'a', 'label': 'A', 'description': 'first'},
        {'item_key': 'c', 'label': 'C', 'description': ''},
    ]
    assert result['evaluations'] == [
        {'staff_name': 'Ben', 'perspective': 'mgr', 'scores': {'a': 4, 'c': 3}},
    ]


def test_import_aggregates_scores_across_rows_per_staff():
    data = workbook_bytes([
        ['item_key', 'label', 'description', 'self_Aiko'],
        ['a', 'A', '', 1],
        ['b', 'B', '', 2],
    ])
    result = import_xlsx(data)
    assert result['evaluations'] == [
        {'staff_name': 'Aiko', 'perspective': 'self', 'scores': {'a': 1, 'b': 2}},
    ]


def test_import_of_empty_sheet():
    assert import_xlsx(workbook_bytes([])) == {'template_meta': {}, 'items': [], 'evaluations': []}


def test_csv_import_uses_same_rules():
    data = 'item_key,label,description,self_Aiko\r\na,A,,2\r\n,B,,3\r\n'.encode('utf-8-sig')
    result = import_csv(data)
    assert result['items'] == [{'item_key': 'a', 'label': 'A', 'description': ''}]
    assert result['evaluations'][0]['scores'] == {'a': 2}


def test_unreadable_workbook_raises():
    with pytest.raises(ImportParseError):
        import_xlsx(b'not a zip file')
    with pytest.raises(ImportParseError):
        import_file(b'', 'scores.pdf')


def test_formula_like_text_survives_round_trip():
    items = [{'item_key': 'calm', 'label': '=Calm under pressure', 'description': '=1+1'}]
    staff = [{'id': 's1', 'name': '=Aiko'}]
    rows = build_rows(items, staff, [
        {'evaluator_role': '自己', 'staff_id': 's1', 'item_key': 'calm', 'score': 2},
    ])
    result = import_xlsx(export_xlsx(items, staff, rows))
    assert result['items'] == items
    assert result['evaluations'] == [
        {'staff_name': '=Aiko', 'perspective': 'self', 'scores': {'calm': 2}},
    ]
