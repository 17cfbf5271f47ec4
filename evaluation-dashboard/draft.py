"""
The draft row: a single placeholder row used to create new items inline.

The draft row is its own type rather than a row with a reserved item key,
so it can never collide with a persisted item. Only label and description
are editable on it. Scoring the draft row is rejected and resets it.
"""

import logging

log = logging.getLogger(__name__)

EMPTY = 'empty'
EDITING = 'editing'

EDITABLE_FIELDS = ('label', 'description')


class DraftRow:
    def __init__(self):
        self.label = ''
        self.description = ''

    @property
    def state(self):
        if self.label or self.description:
            return EDITING
        return EMPTY

    def reset(self):
        self.label = ''
        self.description = ''

    def edit(self, field, value):
        """
        Record an edit. Returns False (and resets) for any field other than
        label/description.
        """
        if field not in EDITABLE_FIELDS:
            log.debug("rejected edit of %r on draft row", field)
            self.reset()
            return False
        setattr(self, field, '' if value is None else str(value))
        return True

    def commit(self):
        """
        Take the trimmed (label, description) pair and reset to empty.

        Returns None when both fields are blank; nothing is promoted then.
        """
        label = self.label.strip()
        description = self.description.strip()
        self.reset()
        if not label and not description:
            return None
        return label, description

    def as_row(self, staff):
        """Grid representation: draft text plus every score field unset."""
        row = {'draft': True, 'label': self.label, 'description': self.description}
        for member in staff:
            row[f"self_{member['id']}"] = None
            row[f"mgr_{member['id']}"] = None
        return row
