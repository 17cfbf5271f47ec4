"""
Generated item suggestions.

The generator returns {'itemName', 'itemDescription'}; either may be blank,
so results are normalized with fallbacks before they seed a new item.
"""

DEFAULT_SEED = (
    'For us, teamwork means working well not only with other childcare staff '
    'but also with colleagues in other roles.'
)
FALLBACK_NAME = 'AI suggested item'
FALLBACK_DESCRIPTION = (
    'Edit the generated text. Describe the aim of the evaluation and what to '
    'observe in two or three sentences.'
)
MAX_LABEL_LENGTH = 80


def _text(value):
    if value is None:
        return ''
    return str(value).strip()


def normalize_suggestion(result):
    """Trim both fields and fill blanks with the fallback text."""
    result = result or {}
    return {
        'itemName': _text(result.get('itemName')) or FALLBACK_NAME,
        'itemDescription': _text(result.get('itemDescription')) or FALLBACK_DESCRIPTION,
    }


def can_apply(suggestion):
    return bool(suggestion and _text(suggestion.get('itemName')) and _text(suggestion.get('itemDescription')))


def suggestion_to_item_fields(suggestion, item_count):
    """(label, description) for a new item built from a suggestion."""
    name = _text(suggestion.get('itemName'))
    label = name[:MAX_LABEL_LENGTH] or f"AI suggestion {item_count + 1}"
    description = _text(suggestion.get('itemDescription')) or name
    return label, description


async def request_suggestion(api, tenant_id, role, seed_text=DEFAULT_SEED, style=''):
    """Ask the generator for one item and return the normalized pair."""
    raw = await api.generate_suggestion(tenant_id, role, seed_text, style)
    return normalize_suggestion(raw)
