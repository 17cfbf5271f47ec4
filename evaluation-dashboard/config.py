"""
Environment-driven configuration for the evaluation dashboard.

CLI flags override these values; see cli.py.
"""

import os

ROLES = ['保育士', 'リーダー', '主任', '看護師', '事務']

# Evaluator-role values as stored by the data source. Only MANAGER_ROLE maps
# to the manager perspective; every other value is read as a self evaluation.
MANAGER_ROLE = '園長'
SELF_ROLE = '自己'

FLUSH_DELAY_MS = 600
HTTP_TIMEOUT = 15.0


def _clean_token(raw):
    """Stored tokens sometimes come back as the literal strings 'undefined'/'null'."""
    raw = (raw or '').strip()
    if raw in ('undefined', 'null'):
        return ''
    return raw


def _env_float(environ, name, default):
    raw = environ.get(name, '')
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def load_config(environ=None):
    """Read configuration from the environment and return a plain dict."""
    env = os.environ if environ is None else environ
    role = env.get('EVAL_ROLE', '').strip() or ROLES[0]
    return {
        'api_base': env.get('EVAL_API_BASE', '').strip().rstrip('/'),
        'tenant_id': env.get('EVAL_TENANT_ID', '').strip(),
        'token': _clean_token(env.get('EVAL_TOKEN')),
        'role': role,
        'roles': list(ROLES),
        'manager_role': MANAGER_ROLE,
        'self_role': SELF_ROLE,
        'flush_delay': _env_float(env, 'EVAL_FLUSH_DELAY_MS', FLUSH_DELAY_MS) / 1000.0,
        'timeout': _env_float(env, 'EVAL_HTTP_TIMEOUT', HTTP_TIMEOUT),
        'log_level': env.get('EVAL_LOG_LEVEL', 'INFO').strip().upper() or 'INFO',
        'host': env.get('HOST', '127.0.0.1'),
        'port': int(env.get('PORT', 8080)),
    }
