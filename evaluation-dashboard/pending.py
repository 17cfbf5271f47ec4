"""
Pending-save queue and debounced flush scheduler.

Score edits are recorded per perspective as
{context: {staff_id: {item_key: score}}} and written in one batched request
per perspective and context once edits have been quiet for the flush delay.
The context is whatever the caller tags an edit with; the controller uses
(tenant_id, template_id), so scores queued before a switch still go out
against the template they were entered for. The queue owns both maps and
the timer; enqueue, force_flush and teardown_flush are the only ways to
change them.

A flush snapshots each staff entry and, on success, removes an entry only
if it is still the same object. Every enqueue replaces the staff entry
with a new dict, so edits made while a request is in flight survive and
go out with the next flush.
"""

import asyncio
import logging

from errors import AuthExpired, PersistenceFailure
from matrix import PERSPECTIVES

log = logging.getLogger(__name__)

FLUSH_DELAY = 0.6


class SaveQueue:
    """
    submit(perspective, [{'staffId': ..., 'scores': {...}}], context) is
    awaited once per non-empty perspective and context. reload() is awaited
    after a flush in which at least one batch succeeded.
    """

    def __init__(self, submit, reload, delay=FLUSH_DELAY):
        self._submit = submit
        self._reload = reload
        self.delay = delay
        self._pending = {p: {} for p in PERSPECTIVES}
        self._timer = None
        self._tasks = set()
        self.flushing = 0
        self.halted = False
        self.closed = False

    # ── Queries ──

    def pending(self, perspective):
        """Copy of one perspective's pending map, merged across contexts."""
        merged = {}
        for bucket in self._pending[perspective].values():
            for sid, scores in bucket.items():
                merged[sid] = {**merged.get(sid, {}), **scores}
        return merged

    def pending_count(self):
        """Number of queued (perspective, context, staff, item) scores."""
        return sum(
            len(scores)
            for contexts in self._pending.values()
            for bucket in contexts.values()
            for scores in bucket.values()
        )

    @property
    def armed(self):
        return self._timer is not None

    @property
    def saving(self):
        return self.flushing > 0

    # ── Mutation entry points ──

    def enqueue(self, perspective, staff_id, item_key, score, context=None):
        """Merge one score into the staff entry and restart the quiet window."""
        if perspective not in self._pending:
            raise ValueError(f"Unknown perspective: {perspective!r}")
        bucket = self._pending[perspective].setdefault(context, {})
        bucket[staff_id] = {**bucket.get(staff_id, {}), item_key: score}
        self._arm()

    async def force_flush(self, refresh=True):
        """Flush now, skipping the quiet window."""
        self._cancel_timer()
        if self.halted or self.pending_count() == 0:
            return False
        return await self.flush(refresh=refresh)

    async def teardown_flush(self):
        """Last flush on shutdown; never triggers a reload."""
        self.closed = True
        self._cancel_timer()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.halted or self.pending_count() == 0:
            return False
        return await self.flush(refresh=False)

    def halt(self):
        """Stop flushing until resume(); queued entries are kept."""
        self.halted = True
        self._cancel_timer()

    def resume(self):
        self.halted = False
        if self.pending_count():
            self._arm()

    # ── Flushing ──

    async def flush(self, refresh=True):
        """
        Flush both perspectives concurrently.

        Returns True if at least one perspective was written.
        """
        self.flushing += 1
        try:
            results = await asyncio.gather(
                *(self._flush_one(p) for p in PERSPECTIVES)
            )
        finally:
            self.flushing -= 1
        any_success = any(results)
        if refresh and any_success and not self.closed:
            await self._reload()
        return any_success

    async def _flush_one(self, perspective):
        contexts = self._pending[perspective]
        if not contexts or self.halted:
            return False
        wrote = False
        for context, bucket in list(contexts.items()):
            if self.halted:
                break
            snapshot = list(bucket.items())
            payload = [{'staffId': sid, 'scores': dict(scores)} for sid, scores in snapshot]
            try:
                await self._submit(perspective, payload, context)
            except AuthExpired:
                log.warning("credential expired while saving %s evaluations; queue halted", perspective)
                self.halt()
                break
            except PersistenceFailure as e:
                log.error("failed to save %s evaluations for %r: %s", perspective, context, e)
                continue
            for sid, scores in snapshot:
                if bucket.get(sid) is scores:
                    del bucket[sid]
            if not bucket and contexts.get(context) is bucket:
                del contexts[context]
            log.debug("saved %s evaluations for %d staff", perspective, len(snapshot))
            wrote = True
        return wrote

    # ── Timer ──

    def _arm(self):
        if self.halted or self.closed:
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._fire)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self):
        self._timer = None
        task = asyncio.ensure_future(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(_log_flush_error)

    async def wait_idle(self):
        """Wait for the armed window and any timer-started flush to finish."""
        while self._timer is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            else:
                await asyncio.sleep(self.delay / 4 or 0.001)


def _log_flush_error(task):
    # timer-started flushes have no awaiting caller
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error("background flush failed: %s", exc, exc_info=exc)
