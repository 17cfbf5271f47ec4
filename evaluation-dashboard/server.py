"""
Flask server — exposes the evaluation matrix to a browser grid and handles
spreadsheet upload/download.

The controller runs on its own asyncio loop in a background thread; every
request hands its work to that loop, so engine state is only ever touched
from one thread.
"""

import asyncio
import io
import json
import logging
import threading

from flask import Flask, Response, request, send_file

import xlsx_io
from errors import ImportParseError

log = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 20 * 1024 * 1024
REQUEST_TIMEOUT = 60


class EngineLoop:
    """An event loop running forever in a daemon thread."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name='engine-loop', daemon=True)
        self._thread.start()

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coro, timeout=REQUEST_TIMEOUT):
        """Run a coroutine on the engine loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout)

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        self.loop.close()


def _json(payload, status=200):
    return Response(
        json.dumps(payload, ensure_ascii=False),
        status=status,
        mimetype='application/json'
    )


def _error(message, status):
    return _json({'error': message}, status)


def create_app(controller, engine):
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_BYTES

    app.controller = controller
    app.engine = engine

    def run(fn, *args, **kwargs):
        async def call():
            return await fn(*args, **kwargs)
        return engine.run(call())

    def state():
        async def snapshot():
            return controller.state()
        return engine.run(snapshot())

    @app.route('/api/state')
    def get_state():
        return _json(state())

    @app.route('/api/refresh', methods=['POST'])
    def refresh():
        run(controller.refresh)
        return _json(state())

    @app.route('/api/cell', methods=['PUT'])
    def edit_cell():
        """Apply one grid edit: {item_key | draft: true, field, value}."""
        body = request.get_json(silent=True)
        if not body or not body.get('field'):
            return _error('field is required', 400)
        if body.get('draft'):
            run(controller.edit_draft, body['field'], body.get('value'))
        else:
            if not body.get('item_key'):
                return _error('item_key is required', 400)
            run(controller.edit_cell, body['item_key'], body['field'], body.get('value'))
        return _json(state())

    @app.route('/api/items', methods=['POST'])
    def add_item():
        run(controller.add_blank_item)
        return _json(state())

    @app.route('/api/items/<item_key>', methods=['DELETE'])
    def remove_item(item_key):
        removed = run(controller.remove_item, item_key)
        if not removed:
            return _error('Not found', 404)
        return _json(state())

    @app.route('/api/select', methods=['POST'])
    def select_item():
        body = request.get_json(silent=True) or {}

        async def select():
            return controller.select_item(body.get('item_key'))
        engine.run(select())
        return _json(state())

    @app.route('/api/context', methods=['POST'])
    def change_context():
        """Switch role/tenant (flushing pending scores first) or perspective."""
        body = request.get_json(silent=True) or {}
        perspective = body.get('perspective')
        if perspective:
            async def switch():
                return controller.set_perspective(perspective)
            if not engine.run(switch()):
                return _error(f"Unknown evaluator type: {perspective}", 400)
        if body.get('tenant'):
            run(controller.set_tenant, body['tenant'])
        if body.get('role'):
            run(controller.set_role, body['role'])
        return _json(state())

    @app.route('/api/token', methods=['POST'])
    def set_token():
        body = request.get_json(silent=True) or {}
        token = (body.get('token') or '').strip()
        if not token:
            return _error('token is required', 400)

        async def install():
            controller.set_token(token)
            await controller.refresh()
        engine.run(install())
        return _json(state())

    @app.route('/api/flush', methods=['POST'])
    def flush():
        saved = run(controller.flush)
        payload = state()
        payload['flushed'] = saved
        return _json(payload)

    @app.route('/api/suggest', methods=['POST'])
    def suggest():
        body = request.get_json(silent=True) or {}
        kwargs = {'style': body.get('style') or ''}
        if body.get('seed_text'):
            kwargs['seed_text'] = body['seed_text']
        suggestion = run(controller.request_suggestion, **kwargs)
        if suggestion is None:
            status = 401 if controller.auth_expired else 502
            return _error(controller.error or 'Generation failed', status)
        return _json(suggestion)

    @app.route('/api/suggest/apply', methods=['POST'])
    def apply_suggestion():
        body = request.get_json(silent=True)
        if not body:
            return _error('No suggestion', 400)
        item = run(controller.apply_suggestion, body)
        if item is None:
            return _error(controller.error or 'No template', 400)
        return _json(state())

    @app.route('/api/export/xlsx')
    def export_xlsx():
        async def build():
            return controller.export_xlsx(), controller.export_filename()
        data, filename = engine.run(build())
        return send_file(
            io.BytesIO(data),
            mimetype=xlsx_io.XLSX_MIMETYPE,
            as_attachment=True,
            download_name=filename
        )

    @app.route('/api/upload', methods=['POST'])
    def upload():
        if 'file' not in request.files:
            return _error('No file provided', 400)
        f = request.files['file']
        if not f.filename:
            return _error('No file selected', 400)
        try:
            result = xlsx_io.import_file(f.read(), f.filename)
        except ImportParseError as e:
            log.warning("rejected upload %s: %s", f.filename, e)
            return _error(str(e), 422)
        summary = run(controller.apply_import, result)
        if summary is None:
            return _error(controller.error or 'No template', 400)
        payload = state()
        payload['import'] = summary
        return _json(payload)

    return app


def run_server(controller, engine, host='127.0.0.1', port=8080):
    app = create_app(controller, engine)
    try:
        app.run(host=host, port=port, debug=False)
    finally:
        engine.run(controller.close())
        engine.stop()
