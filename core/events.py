"""
Real-time events published by the custody API.

Each event is a Django signal. A websocket bridge (or anything else that
wants live updates) connects a receiver; core.signals logs every event.
Transfer events carry the handler ids so a bridge can route them to the
sender, the receiver and the admins.
"""
from django.dispatch import Signal

ATTENDANCE_RECORDED = 'attendance:recorded'
ATTENDANCE_SESSION_ENDED = 'attendance:sessionEnded'
BATCH_STATUS_UPDATED = 'batch:status_updated'
TRANSFER_REQUESTED = 'transfer:requested'
TRANSFER_CONFIRMED = 'transfer:confirmed'
TRANSFER_REJECTED = 'transfer:rejected'

attendance_recorded = Signal()
attendance_session_ended = Signal()
batch_status_updated = Signal()
transfer_requested = Signal()
transfer_confirmed = Signal()
transfer_rejected = Signal()

SIGNALS = {
    ATTENDANCE_RECORDED: attendance_recorded,
    ATTENDANCE_SESSION_ENDED: attendance_session_ended,
    BATCH_STATUS_UPDATED: batch_status_updated,
    TRANSFER_REQUESTED: transfer_requested,
    TRANSFER_CONFIRMED: transfer_confirmed,
    TRANSFER_REJECTED: transfer_rejected,
}


def publish(event, **payload):
    """Send ``event`` to all connected receivers with ``payload`` as kwargs."""
    return SIGNALS[event].send(sender=event, event=event, payload=payload)


def publish_batch_status(session, previous_status, changed_by=None, reason=''):
    return publish(
        BATCH_STATUS_UPDATED,
        exam_session_id=str(session.id),
        batch_qr_code=session.batch_qr_code,
        previous_status=previous_status,
        status=session.status,
        changed_by=str(changed_by.pk) if changed_by is not None else None,
        reason=reason,
    )


def publish_transfer(event, transfer_id, session, from_handler_id, to_handler_id, **extra):
    return publish(
        event,
        transfer_id=str(transfer_id),
        exam_session_id=str(session.id),
        batch_qr_code=session.batch_qr_code,
        course_code=session.course_code,
        course_name=session.course_name,
        from_handler_id=str(from_handler_id),
        to_handler_id=str(to_handler_id),
        **extra,
    )
