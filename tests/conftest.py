"""Shared fixtures: an in-memory evaluation backend served over httpx.MockTransport."""

import json

import httpx
import pytest

from api import EvaluationApi
from config import MANAGER_ROLE, SELF_ROLE
from sync import SyncController

TENANT = 't1'
ROLE = '保育士'


class FakeBackend:
    def __init__(self):
        self.templates = {ROLE: {'id': 'tpl-1', 'title': 'Nursery staff', 'max_score': 5}}
        self.items = {
            'tpl-1': [
                {'item_key': 'teamwork', 'label': 'Teamwork', 'description': 'Works with others'},
                {'item_key': 'safety', 'label': 'Safety', 'description': 'Keeps children safe'},
            ],
        }
        self.staff = [
            {'id': 's1', 'name': 'Aiko', 'role': ROLE},
            {'id': 's2', 'name': 'Ben', 'role': ROLE},
        ]
        self.cells = [
            {'period': '2026-10', 'evaluator_role': SELF_ROLE, 'staff_id': 's1', 'item_key': 'teamwork', 'score': 3},
            {'period': '2026-10', 'evaluator_role': MANAGER_ROLE, 'staff_id': 's1', 'item_key': 'teamwork', 'score': 4},
            {'period': '2026-10', 'evaluator_role': SELF_ROLE, 'staff_id': 's2', 'item_key': 'gone', 'score': 2},
        ]
        self.requests = []
        self.fail_items = False
        self.fail_roles = set()
        self.unauthorized = False
        self.gate = None
        self.suggestion = {'itemName': ' Kind words ', 'itemDescription': ''}

    # ── helpers for assertions ──

    def calls(self, method, prefix):
        return [
            (r.method, r.url.path, body) for r, body in self.requests
            if r.method == method and r.url.path.startswith(prefix)
        ]

    def posted_evaluations(self):
        return [body for _, _, body in self.calls('POST', '/api/evaluations/')]

    def reloads(self):
        return len(self.calls('GET', '/api/templates/'))

    # ── transport ──

    def transport(self):
        return httpx.MockTransport(self.handle)

    async def handle(self, request):
        body = json.loads(request.content) if request.content else None
        self.requests.append((request, body))
        if self.unauthorized:
            return httpx.Response(401, json={'error': 'unauthorized'})
        parts = request.url.path.strip('/').split('/')

        if parts[:2] == ['api', 'templates'] and request.method == 'GET':
            template = self.templates.get(parts[3])
            items = self.items.get(template['id'], []) if template else []
            return httpx.Response(200, json={
                'template': template, 'items': items, 'staff': self.staff,
            })
        if parts[:2] == ['api', 'templates'] and request.method == 'PUT':
            if self.fail_items:
                return httpx.Response(500, json={'error': 'database is down'})
            self.items[parts[3]] = [
                {'item_key': i['key'], 'label': i['label'], 'description': i['description']}
                for i in body['items']
            ]
            return httpx.Response(200, json={'ok': True})
        if parts[:2] == ['api', 'evaluations'] and request.method == 'GET':
            return httpx.Response(200, json={'rows': self.cells})
        if parts[:2] == ['api', 'evaluations'] and request.method == 'POST':
            if self.gate is not None:
                await self.gate.wait()
            if body['evaluatorRole'] in self.fail_roles:
                return httpx.Response(503, text='unavailable')
            for entry in body['evaluations']:
                for item_key, score in entry['scores'].items():
                    self.cells = [
                        c for c in self.cells
                        if not (c['staff_id'] == entry['staffId'] and c['item_key'] == item_key
                                and c['evaluator_role'] == body['evaluatorRole'])
                    ]
                    self.cells.append({
                        'period': body['period'], 'evaluator_role': body['evaluatorRole'],
                        'staff_id': entry['staffId'], 'item_key': item_key, 'score': score,
                    })
            return httpx.Response(200, json={'ok': True})
        if parts[:2] == ['api', 'staff'] and request.method == 'POST':
            member = {'id': f"s{len(self.staff) + 1}", 'name': body['name'], 'role': body['role']}
            self.staff.append(member)
            return httpx.Response(200, json={'staff': member})
        if parts[:2] == ['api', 'staff'] and request.method == 'PUT':
            for member in self.staff:
                if member['id'] == parts[3]:
                    member['name'] = body['name']
                    return httpx.Response(200, json={'staff': member})
            return httpx.Response(404, json={'error': 'staff not found'})
        if parts == ['api', 'dify', 'generate']:
            return httpx.Response(200, json=self.suggestion)
        return httpx.Response(404, json={'error': 'Not found'})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_controller(backend):
    def factory(**kwargs):
        api = EvaluationApi('http://backend.test', token='tok', transport=backend.transport())
        kwargs.setdefault('tenant_id', TENANT)
        kwargs.setdefault('role', ROLE)
        kwargs.setdefault('flush_delay', 0.01)
        kwargs.setdefault('period', '2026-10')
        return SyncController(api, **kwargs)
    return factory
