"""Job handlers, keyed by the job kind they process."""
from __future__ import annotations

from functools import partial

from handlers.case_sync import handle_batch_case_sync, handle_case_sync, handle_daily_case_sync
from handlers.context import HandlerContext
from handlers.maintenance import handle_cleanup
from handlers.notification import send_notification
from handlers.report_triage import triage_report
from handlers.sos_dispatch import dispatch_sos
from job_queue.payloads import JobKind


def build_handlers(ctx: HandlerContext) -> dict:
    """Bind every handler to ``ctx``. The table covers every job kind."""
    return {
        JobKind.DISPATCH_SOS: partial(dispatch_sos, ctx),
        JobKind.SEND_NOTIFICATION: partial(send_notification, ctx),
        JobKind.CLEANUP_OLD_JOBS: partial(handle_cleanup, ctx),
        JobKind.SYNC_CASE: partial(handle_case_sync, ctx),
        JobKind.BATCH_SYNC_CASES: partial(handle_batch_case_sync, ctx),
        JobKind.DAILY_CASE_SYNC: partial(handle_daily_case_sync, ctx),
        JobKind.TRIAGE_REPORT: partial(triage_report, ctx),
    }


__all__ = ["HandlerContext", "build_handlers"]
