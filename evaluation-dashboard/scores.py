"""
Score normalization and item-key helpers.

Scores are entered into grid cells either as numbers or as text. Text may be
a value that was already rendered for display ("3/5"), so only the part
before the slash is read back. A score of 0 renders exactly like an unset
cell ("/5"); re-parsing that text yields unset.
"""

import math
import re
import time


def _num_text(n):
    """Render a number without a trailing '.0' for whole values."""
    if isinstance(n, float) and n.is_integer():
        return str(int(n))
    return str(n)


def _tidy(n):
    if isinstance(n, float) and n.is_integer():
        return int(n)
    return n


def _to_number(raw):
    """
    Convert a raw cell value to a finite number, or None.

    Handles:
      - ints and floats (NaN/inf are rejected)
      - strings, trimmed; empty strings are unset
      - "n/max" strings, read from the portion before the first slash
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        n = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        portion = text.split('/')[0].strip()
        if not portion:
            return None
        try:
            n = float(portion)
        except ValueError:
            return None
    if not math.isfinite(n):
        return None
    return _tidy(n)


def parse_score(raw, max_score=None):
    """
    Parse a score entered into a cell.

    Returns None for unset/invalid input. When max_score is given the result
    is clamped to [0, max_score]; otherwise the number passes through as is.
    """
    n = _to_number(raw)
    if n is None:
        return None
    if max_score is None:
        return n
    return _tidy(max(0, min(max_score, n)))


def format_score(value, max_score):
    """Render a score for display as 'value/max'; unset and 0 render as '/max'."""
    suffix = f"/{_num_text(max_score)}"
    n = _to_number(value)
    if n is None or n == 0:
        return suffix
    return f"{_num_text(n)}{suffix}"


def create_item_key(label):
    """Slug an item label into a key: lowercase ascii words joined by '_'."""
    slug = re.sub(r'[^a-z0-9]+', '_', (label or '').lower())
    slug = slug.strip('_')[:40]
    # Labels without any ascii letters (e.g. Japanese) slug to nothing
    return slug or f"item_{int(time.time() * 1000)}"


def unique_item_key(label, existing_keys):
    """Slug label and append _1, _2, ... until it does not clash with existing_keys."""
    existing = set(existing_keys)
    base = create_item_key(label)
    key = base
    suffix = 1
    while key in existing:
        key = f"{base}_{suffix}"
        suffix += 1
    return key
