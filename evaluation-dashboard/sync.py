"""
Synchronization controller.

Holds the authoritative state for one (tenant, role) context (template,
items, staff and the dense row matrix) and applies grid edits to it:

  - score edits update the row and go through the pending-save queue
  - label/description edits and item add/remove persist the full item list,
    reloading from the data source when that fails
  - draft row edits promote a new item on commit
  - role/tenant switches flush pending scores before the switch
"""

import datetime
import logging

import suggest
import xlsx_io
from config import MANAGER_ROLE, ROLES, SELF_ROLE
from draft import DraftRow, EDITABLE_FIELDS
from errors import AuthExpired, PersistenceFailure
from matrix import (
    PERSPECTIVES, blank_row, build_rows, build_staff_columns, max_total,
    parse_field, scoreboard,
)
from pending import FLUSH_DELAY, SaveQueue
from scores import parse_score, unique_item_key

log = logging.getLogger(__name__)

NO_TEMPLATE_MESSAGE = 'No template exists for this role. Create a template first.'


def current_period():
    return datetime.date.today().strftime('%Y-%m')


class SyncController:
    def __init__(self, api, tenant_id='', role=ROLES[0], manager_role=MANAGER_ROLE,
                 self_role=SELF_ROLE, flush_delay=FLUSH_DELAY, period=None,
                 on_auth_expired=None):
        self.api = api
        self.tenant_id = tenant_id or ''
        self.role = role
        self.manager_role = manager_role
        self.self_role = self_role
        self.period = period
        self.on_auth_expired = on_auth_expired

        self.template = None
        self.items = []
        self.staff = []
        self.rows = []
        self.draft = DraftRow()
        self.perspective = 'self'
        self.selected_item_key = None

        self.error = None
        self.loading = False
        self.saving_items = False
        self.auth_expired = False

        self.queue = SaveQueue(self._submit, self.refresh, delay=flush_delay)

    # ── Loading ──

    async def refresh(self):
        """Reload template, items, staff and cells; rebuild the matrix."""
        if not self.tenant_id or not self.api.token:
            return False
        self.loading = True
        self.error = None
        try:
            data = await self.api.fetch_template(self.tenant_id, self.role)
            template = data['template']
            if (self.template and template and template.get('id') != self.template.get('id')
                    and self.queue.pending_count()):
                # scores queued against the old template go out first
                await self.queue.force_flush(refresh=False)
            cells = []
            if template:
                cells = await self.api.fetch_evaluations(self.tenant_id, self.role)
        except AuthExpired as e:
            self._auth_failure(str(e))
            return False
        except PersistenceFailure as e:
            log.error("reload failed: %s", e)
            self.error = str(e)
            self.template = None
            self.items = []
            self.staff = []
            self.rows = []
            self.selected_item_key = None
            return False
        finally:
            self.loading = False

        old_staff_ids = [s['id'] for s in self.staff]
        self.template = template
        self.items = list(data['items'])
        self.staff = list(data['staff'])
        self.rows = build_rows(self.items, self.staff, cells, self.manager_role)
        self.selected_item_key = None
        if [s['id'] for s in self.staff] != old_staff_ids:
            self.draft.reset()
        return True

    # ── Auth ──

    def _auth_failure(self, message):
        log.warning("auth expired: %s", message)
        self.error = message or 'Your session has expired. Please log in again.'
        self.api.token = ''
        self.auth_expired = True
        self.queue.halt()
        if self.on_auth_expired is not None:
            self.on_auth_expired(self.error)

    def set_token(self, token):
        """Install a fresh credential and re-arm the save queue."""
        self.api.token = token or ''
        if self.api.token:
            self.auth_expired = False
            self.error = None
            self.queue.resume()

    # ── Context ──

    async def set_role(self, role):
        if role == self.role:
            return False
        await self.queue.force_flush(refresh=False)
        self.role = role
        await self.refresh()
        return True

    async def set_tenant(self, tenant_id):
        if tenant_id == self.tenant_id:
            return False
        await self.queue.force_flush(refresh=False)
        self.tenant_id = tenant_id
        await self.refresh()
        return True

    def set_perspective(self, perspective):
        if perspective not in PERSPECTIVES:
            self.error = f"Unknown evaluator type: {perspective}"
            return False
        self.perspective = perspective
        return True

    def select_item(self, item_key):
        keys = {item['item_key'] for item in self.items}
        self.selected_item_key = item_key if item_key in keys else None
        return self.selected_item_key

    # ── Scores ──

    async def _submit(self, perspective, payload, context):
        if not self.api.token:
            raise AuthExpired('no credential')
        if not context or not all(context):
            raise PersistenceFailure('no active template')
        tenant_id, template_id = context
        evaluator_role = self.manager_role if perspective == 'mgr' else self.self_role
        try:
            await self.api.submit_evaluations(
                tenant_id, template_id, evaluator_role,
                self.period or current_period(), payload,
            )
        except AuthExpired as e:
            self._auth_failure(str(e))
            raise

    def _context(self):
        if not self.template or not self.tenant_id:
            return None
        return (self.tenant_id, self.template['id'])

    def _find_staff(self, staff_id):
        for member in self.staff:
            if str(member['id']) == str(staff_id):
                return member
        return None

    def _set_row_field(self, item_key, field, value):
        self.rows = [
            dict(row, **{field: value}) if row['item_key'] == item_key else row
            for row in self.rows
        ]

    def _queue_score(self, item_key, field, raw):
        perspective, staff_id = parse_field(field)
        if perspective is None:
            return None
        member = self._find_staff(staff_id)
        if member is None or not any(row['item_key'] == item_key for row in self.rows):
            return None
        score = parse_score(raw, self.template.get('max_score'))
        self._set_row_field(item_key, field, score)
        # an emptied cell is saved as 0, which displays the same as unset
        self.queue.enqueue(
            perspective, member['id'], item_key, 0 if score is None else score,
            context=self._context(),
        )
        return score

    async def edit_cell(self, item_key, field, value):
        """Apply one grid edit on a persisted row."""
        if not self.template:
            return None
        if field in EDITABLE_FIELDS:
            return await self._edit_item_text(item_key, field, value)
        return self._queue_score(item_key, field, value)

    async def flush(self):
        return await self.queue.force_flush()

    def pending_count(self):
        return self.queue.pending_count()

    @property
    def saving(self):
        return self.saving_items or self.queue.saving

    # ── Items ──

    async def _persist_items(self, items):
        """Save the full item list; on failure reload to roll back."""
        if not self.template or not self.tenant_id or not self.api.token:
            return False
        self.saving_items = True
        try:
            await self.api.save_items(self.tenant_id, self.template['id'], items)
            return True
        except AuthExpired as e:
            self._auth_failure(str(e))
        except PersistenceFailure as e:
            log.error("failed to save template items: %s", e)
            self.error = str(e)
        finally:
            self.saving_items = False
        error = self.error
        await self.refresh()
        self.error = self.error or error
        return False

    async def _edit_item_text(self, item_key, field, value):
        if not any(item['item_key'] == item_key for item in self.items):
            return None
        next_value = value.strip() if isinstance(value, str) else ''
        self.items = [
            dict(item, **{field: next_value}) if item['item_key'] == item_key else item
            for item in self.items
        ]
        self._set_row_field(item_key, field, next_value)
        await self._persist_items(self.items)
        return next_value

    async def _append_item(self, label, description, select=False):
        key = unique_item_key(label, [item['item_key'] for item in self.items])
        item = {'item_key': key, 'label': label, 'description': description}
        self.items = self.items + [item]
        self.rows = self.rows + [blank_row(item, self.staff)]
        if select:
            self.selected_item_key = key
        await self._persist_items(self.items)
        return item

    async def add_blank_item(self):
        if not self.template:
            self.error = NO_TEMPLATE_MESSAGE
            return None
        return await self._append_item(f"New item {len(self.items) + 1}", '')

    async def remove_item(self, item_key=None):
        key = item_key or self.selected_item_key
        if not key:
            return False
        next_items = [item for item in self.items if item['item_key'] != key]
        if len(next_items) == len(self.items):
            return False
        self.items = next_items
        self.rows = [row for row in self.rows if row['item_key'] != key]
        self.selected_item_key = None
        await self._persist_items(next_items)
        return True

    # ── Draft row ──

    async def edit_draft(self, field, value, commit=True):
        """
        Edit the draft row. Grid edits commit immediately, so by default a
        non-blank label/description promotes a new item right away.
        """
        if not self.template:
            self.error = NO_TEMPLATE_MESSAGE
            self.draft.reset()
            return None
        if not self.draft.edit(field, value):
            return None
        if not commit:
            return None
        return await self.commit_draft()

    async def commit_draft(self):
        if not self.template:
            self.draft.reset()
            return None
        fields = self.draft.commit()
        if fields is None:
            return None
        label, description = fields
        label = label or f"New item {len(self.items) + 1}"
        return await self._append_item(label, description, select=True)

    # ── Suggestions ──

    async def request_suggestion(self, seed_text=suggest.DEFAULT_SEED, style=''):
        try:
            return await suggest.request_suggestion(
                self.api, self.tenant_id, self.role, seed_text, style
            )
        except AuthExpired as e:
            self._auth_failure(str(e))
        except PersistenceFailure as e:
            log.error("suggestion failed: %s", e)
            self.error = str(e)
        return None

    async def apply_suggestion(self, suggestion):
        """Add an item from a generated suggestion, bypassing the draft row."""
        if not self.template:
            self.error = NO_TEMPLATE_MESSAGE
            return None
        if not suggest.can_apply(suggestion):
            self.error = 'The suggestion needs both a name and a description.'
            return None
        label, description = suggest.suggestion_to_item_fields(suggestion, len(self.items))
        return await self._append_item(label, description)

    # ── Staff ──

    async def create_staff(self, name):
        name = (name or '').strip()
        if not name:
            self.error = 'Enter a staff name.'
            return None
        if not self.tenant_id or not self.api.token:
            self.error = 'You need to log in to add staff.'
            return None
        try:
            created = await self.api.create_staff(self.tenant_id, name, self.role or 'staff')
        except AuthExpired as e:
            self._auth_failure(str(e))
            return None
        except PersistenceFailure as e:
            log.error("failed to create staff: %s", e)
            self.error = str(e)
            return None
        await self.refresh()
        return created

    async def update_staff(self, staff_id, name):
        name = (name or '').strip()
        if not name:
            self.error = 'Enter a staff name.'
            return None
        if not self.tenant_id or not self.api.token:
            self.error = 'You need to log in to update staff.'
            return None
        try:
            return await self.api.update_staff(self.tenant_id, staff_id, name)
        except AuthExpired as e:
            self._auth_failure(str(e))
        except PersistenceFailure as e:
            log.error("failed to update staff: %s", e)
            self.error = str(e)
        return None

    # ── Spreadsheet ──

    def export_filename(self):
        return f"export_{self.role}.xlsx"

    def export_xlsx(self):
        return xlsx_io.export_xlsx(self.items, self.staff, self.rows)

    async def apply_import(self, result):
        """
        Merge an imported spreadsheet: items by key, then scores by staff name.

        Returns a summary dict, or None when there is no template.
        """
        if not self.template:
            self.error = NO_TEMPLATE_MESSAGE
            return None
        merged = [dict(item) for item in self.items]
        index = {item['item_key']: n for n, item in enumerate(merged)}
        for item in result.get('items', []):
            key = item['item_key']
            if key in index:
                merged[index[key]]['label'] = item.get('label', '')
                merged[index[key]]['description'] = item.get('description', '')
            else:
                index[key] = len(merged)
                merged.append({
                    'item_key': key,
                    'label': item.get('label', ''),
                    'description': item.get('description', ''),
                })
        old_rows = {row['item_key']: row for row in self.rows}
        rows = []
        for item in merged:
            row = dict(old_rows.get(item['item_key']) or blank_row(item, self.staff))
            row['label'] = item['label']
            row['description'] = item['description']
            rows.append(row)
        self.items = merged
        self.rows = rows
        if not await self._persist_items(merged):
            return {'items': 0, 'scores': 0, 'unknown_staff': []}

        staff_by_name = {member['name']: member for member in self.staff}
        queued = 0
        unknown = set()
        for evaluation in result.get('evaluations', []):
            member = staff_by_name.get(evaluation['staff_name'])
            if member is None:
                unknown.add(evaluation['staff_name'])
                continue
            field = f"{evaluation['perspective']}_{member['id']}"
            for item_key, raw in evaluation['scores'].items():
                if self._queue_score(item_key, field, raw) is not None:
                    queued += 1
        if unknown:
            log.warning("import skipped unknown staff: %s", ', '.join(sorted(unknown)))
        if queued:
            await self.queue.force_flush()
        return {'items': len(result.get('items', [])), 'scores': queued,
                'unknown_staff': sorted(unknown)}

    # ── View ──

    def columns(self):
        return [
            {'field': field, 'header': member['name']}
            for field, member in zip(build_staff_columns(self.staff, self.perspective), self.staff)
        ]

    def state(self):
        """JSON-ready view of the current matrix for the grid."""
        board = scoreboard(self.rows, self.staff, self.perspective)
        return {
            'tenant_id': self.tenant_id,
            'role': self.role,
            'perspective': self.perspective,
            'template': self.template,
            'items': self.items,
            'staff': self.staff,
            'columns': self.columns(),
            'rows': self.rows,
            'draft': self.draft.as_row(self.staff),
            'selected_item_key': self.selected_item_key,
            'scoreboard': board,
            'max_total': max_total(self.template, len(self.items)),
            'error': self.error,
            'loading': self.loading,
            'saving': self.saving,
            'pending': self.pending_count(),
            'auth_expired': self.auth_expired,
        }

    async def close(self):
        """Final flush (no reload) and release the HTTP client."""
        try:
            await self.queue.teardown_flush()
        finally:
            await self.api.aclose()
