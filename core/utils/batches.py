"""
Batch status automation – status changes driven by custody and attendance events.
"""
import logging

from django.utils import timezone

from core.events import publish_batch_status
from core.models import BatchTransfer, ExamSession, User
from core.utils.custody import is_valid_transition

audit_logger = logging.getLogger('custody.audit')

INITIAL_CUSTODY_NOTE = 'Initial custody established upon submission'

# Receiver role -> batch status reached when they confirm a transfer
RECEIVER_STATUS = {
    User.ROLE_LECTURER: ExamSession.STATUS_WITH_LECTURER,
    User.ROLE_DEPARTMENT_HEAD: ExamSession.STATUS_UNDER_GRADING,
    User.ROLE_FACULTY_OFFICER: ExamSession.STATUS_UNDER_GRADING,
}


def set_batch_status(session, new_status, user=None, reason=''):
    """Persist a status change and publish ``batch:status_updated``."""
    previous = session.status
    session.status = new_status
    session.save(update_fields=['status'])

    audit_logger.info(
        'BATCH_STATUS | session=%s | batch=%s | from=%s | to=%s | by=%s | reason=%s',
        session.id, session.batch_qr_code, previous, new_status,
        getattr(user, 'username', 'system'), reason,
    )
    publish_batch_status(session, previous, changed_by=user, reason=reason)
    return previous


def establish_initial_custody(session, user, script_count):
    """
    Record the submitting handler as first custodian.

    Only when the batch has no transfer yet; returns the new transfer or None.
    """
    if session.transfers.exists():
        return None
    now = timezone.now()
    transfer = BatchTransfer.objects.create(
        exam_session=session,
        from_handler=user,
        to_handler=user,
        exams_expected=script_count,
        exams_received=script_count,
        status=BatchTransfer.STATUS_CONFIRMED,
        requested_at=now,
        confirmed_at=now,
        notes=INITIAL_CUSTODY_NOTE,
    )
    audit_logger.info(
        'CUSTODY_ESTABLISHED | session=%s | custodian=%s | scripts=%d',
        session.id, user.username, script_count,
    )
    return transfer


def advance_on_transfer_initiated(session, user):
    """First handoff of a submitted batch puts it in transit."""
    if session.status == ExamSession.STATUS_SUBMITTED:
        set_batch_status(
            session, ExamSession.STATUS_IN_TRANSIT, user,
            reason='Transfer initiated',
        )
        return True
    return False


def advance_on_transfer_confirmed(transfer, user):
    """
    Move the batch forward according to the receiver's role.

    Returns the new status, or None when the receiver's role has no
    follow-up status or the workflow does not allow it from here.
    """
    session = transfer.exam_session
    target = RECEIVER_STATUS.get(transfer.to_handler.role)
    if target is None or target == session.status:
        return None
    if not is_valid_transition(session.status, target):
        return None
    set_batch_status(session, target, user, reason='Transfer confirmed')
    return target
