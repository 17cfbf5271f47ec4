"""
HTTP client for the evaluation data source.

Endpoints (all under api_base, bearer token in the Authorization header):

    GET  /api/templates/{tenant}/{role}          template + items + staff
    PUT  /api/templates/{tenant}/{template_id}   full ordered item list
    GET  /api/evaluations/{tenant}/{role}        evaluation cells
    POST /api/evaluations/{tenant}               batched scores, one evaluator role
    POST /api/staff/{tenant}                     create staff member
    PUT  /api/staff/{tenant}/{staff_id}          rename staff member
    POST /api/dify/generate                      generated item suggestion

A 401 from any endpoint raises AuthExpired; any other failure raises
PersistenceFailure.
"""

import json
from urllib.parse import quote

import httpx

from config import HTTP_TIMEOUT
from errors import AuthExpired, PersistenceFailure


def _seg(value):
    return quote(str(value), safe='')


def _error_detail(response):
    """Pull a message out of an error body: {"error": "..."} or plain text."""
    raw = response.text.strip()
    if raw.startswith('{'):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return raw
        if isinstance(parsed, dict) and isinstance(parsed.get('error'), str):
            return parsed['error']
    return raw


class EvaluationApi:
    def __init__(self, base_url='', token='', timeout=HTTP_TIMEOUT, transport=None):
        self.token = token or ''
        self._client = httpx.AsyncClient(
            base_url=base_url or 'http://localhost',
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method, path, what, json_body=None):
        headers = {}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        try:
            response = await self._client.request(method, path, json=json_body, headers=headers)
        except httpx.HTTPError as e:
            raise PersistenceFailure(f"failed to {what}: {e}") from e
        if response.status_code == 401:
            raise AuthExpired(f"session expired while trying to {what}")
        if not response.is_success:
            detail = _error_detail(response)
            message = f"failed to {what} ({response.status_code})"
            if detail:
                message = f"{message}: {detail}"
            raise PersistenceFailure(message, status=response.status_code)
        return response

    @staticmethod
    def _json(response, what):
        try:
            return response.json()
        except ValueError as e:
            raise PersistenceFailure(f"failed to {what}: invalid JSON response") from e

    # ── Reads ──

    async def fetch_template(self, tenant_id, role):
        """Return {'template': dict or None, 'items': [...], 'staff': [...]}."""
        what = 'load template'
        response = await self._request(
            'GET', f"/api/templates/{_seg(tenant_id)}/{_seg(role)}", what
        )
        body = self._json(response, what) or {}
        return {
            'template': body.get('template'),
            'items': body.get('items') or [],
            'staff': body.get('staff') or [],
        }

    async def fetch_evaluations(self, tenant_id, role):
        what = 'load evaluations'
        response = await self._request(
            'GET', f"/api/evaluations/{_seg(tenant_id)}/{_seg(role)}", what
        )
        body = self._json(response, what) or {}
        return body.get('rows') or []

    # ── Writes ──

    async def save_items(self, tenant_id, template_id, items):
        """Replace the template's item list; blank labels get a placeholder name."""
        payload = {
            'items': [
                {
                    'key': item['item_key'],
                    'label': (item.get('label') or '').strip() or f"Untitled item {index + 1}",
                    'description': (item.get('description') or '').strip(),
                    'display_order': index,
                }
                for index, item in enumerate(items)
            ]
        }
        await self._request(
            'PUT', f"/api/templates/{_seg(tenant_id)}/{_seg(template_id)}",
            'save template items', payload,
        )

    async def submit_evaluations(self, tenant_id, template_id, evaluator_role, period, rows):
        payload = {
            'templateId': template_id,
            'period': period,
            'evaluatorRole': evaluator_role,
            'evaluations': rows,
        }
        await self._request(
            'POST', f"/api/evaluations/{_seg(tenant_id)}", 'save evaluations', payload
        )

    async def create_staff(self, tenant_id, name, role):
        what = 'create staff'
        response = await self._request(
            'POST', f"/api/staff/{_seg(tenant_id)}", what, {'name': name, 'role': role}
        )
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get('staff') if isinstance(body, dict) else None

    async def update_staff(self, tenant_id, staff_id, name):
        what = 'update staff'
        response = await self._request(
            'PUT', f"/api/staff/{_seg(tenant_id)}/{_seg(staff_id)}", what, {'name': name}
        )
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get('staff') if isinstance(body, dict) else None

    async def generate_suggestion(self, tenant_id, role, seed_text, style=''):
        what = 'generate suggestion'
        response = await self._request(
            'POST', '/api/dify/generate', what,
            {'tenantId': tenant_id, 'role': role, 'seedText': seed_text, 'style': style},
        )
        body = self._json(response, what)
        if not isinstance(body, dict):
            raise PersistenceFailure(f"failed to {what}: empty response")
        return body
