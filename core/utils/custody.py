"""
Batch custody rules – status workflow and the custody projection.

Everything here is pure: functions take model instances (or any objects with
the same attributes) and never touch the database.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional

from core.models.exam_session import ExamSession
from core.models.transfer import BatchTransfer


# ── Batch status workflow ──────────────────────────────────────────────

ALLOWED_TRANSITIONS = {
    ExamSession.STATUS_NOT_STARTED:   [ExamSession.STATUS_IN_PROGRESS],
    ExamSession.STATUS_IN_PROGRESS:   [ExamSession.STATUS_SUBMITTED],
    ExamSession.STATUS_SUBMITTED:     [ExamSession.STATUS_IN_TRANSIT],
    ExamSession.STATUS_IN_TRANSIT:    [ExamSession.STATUS_WITH_LECTURER, ExamSession.STATUS_SUBMITTED],
    ExamSession.STATUS_WITH_LECTURER: [ExamSession.STATUS_IN_TRANSIT, ExamSession.STATUS_UNDER_GRADING],
    ExamSession.STATUS_UNDER_GRADING: [ExamSession.STATUS_GRADED],
    ExamSession.STATUS_GRADED:        [ExamSession.STATUS_RETURNED],
    ExamSession.STATUS_RETURNED:      [ExamSession.STATUS_COMPLETED],
    ExamSession.STATUS_COMPLETED:     [],
}


class InvalidTransition(ValueError):
    """Raised when a batch status change is not allowed by the workflow."""

    def __init__(self, current, new):
        self.current = current
        self.new = new
        self.allowed = allowed_transitions(current)
        super().__init__(
            f"Cannot transition from {current} to {new}. "
            f"Allowed transitions: {', '.join(self.allowed) or 'none'}"
        )


def allowed_transitions(current):
    return list(ALLOWED_TRANSITIONS.get(current, []))


def is_valid_transition(current, new):
    return new in ALLOWED_TRANSITIONS.get(current, [])


def validate_transition(current, new):
    if not is_valid_transition(current, new):
        raise InvalidTransition(current, new)


# ── Custody projection ─────────────────────────────────────────────────

CUSTODY_PENDING_RECEIPT = 'PENDING_RECEIPT'
CUSTODY_IN_CUSTODY = 'IN_CUSTODY'
CUSTODY_TRANSFER_INITIATED = 'TRANSFER_INITIATED'
CUSTODY_DISCREPANCY_REPORTED = 'DISCREPANCY_REPORTED'
CUSTODY_RELINQUISHED = 'RELINQUISHED'
CUSTODY_UNKNOWN = 'UNKNOWN'

# Transfer statuses after which the receiver physically holds the batch
ACCEPTED_STATUSES = (BatchTransfer.STATUS_CONFIRMED, BatchTransfer.STATUS_RESOLVED)


@dataclass
class CustodyView:
    exam_session_id: str
    status: str
    latest_transfer: BatchTransfer
    pending_transfer_count: int
    transfers: list = field(default_factory=list)


def _key(value):
    return str(value) if value is not None else None


def group_by_session(transfers: Iterable) -> dict:
    """Group transfers by exam session id, each group newest first."""
    groups = {}
    for transfer in transfers:
        groups.setdefault(_key(transfer.exam_session_id), []).append(transfer)
    for group in groups.values():
        group.sort(key=lambda t: t.requested_at, reverse=True)
    return groups


def classify(transfer, viewer_id) -> str:
    """Custody status of one transfer as seen by ``viewer_id``."""
    viewer = _key(viewer_id)
    is_receiver = _key(transfer.to_handler_id) == viewer
    is_sender = _key(transfer.from_handler_id) == viewer
    status = transfer.status

    if is_receiver and status == BatchTransfer.STATUS_PENDING:
        return CUSTODY_PENDING_RECEIPT
    if is_receiver and status in ACCEPTED_STATUSES:
        return CUSTODY_IN_CUSTODY
    if is_sender and status == BatchTransfer.STATUS_PENDING:
        return CUSTODY_TRANSFER_INITIATED
    if (is_receiver or is_sender) and status == BatchTransfer.STATUS_DISCREPANCY_REPORTED:
        return CUSTODY_DISCREPANCY_REPORTED
    if is_sender and status in ACCEPTED_STATUSES:
        return CUSTODY_RELINQUISHED
    return CUSTODY_UNKNOWN


def pending_transfer_count(group) -> int:
    """
    PENDING transfers in a session group that are still outstanding.

    Requests older than the latest accepted handoff (CONFIRMED, or RESOLVED
    after a discrepancy) were superseded by it.
    """
    accepted = [t for t in group if t.status in ACCEPTED_STATUSES]
    cutoff = max((t.requested_at for t in accepted), default=None)
    return sum(
        1 for t in group
        if t.status == BatchTransfer.STATUS_PENDING
        and (cutoff is None or t.requested_at > cutoff)
    )


def derive_custody_status(transfers: Iterable, viewer_id) -> list:
    """
    Per-session custody view for ``viewer_id``.

    Sessions come back newest activity first. An empty input gives [].
    """
    views = []
    for session_id, group in group_by_session(transfers).items():
        latest = group[0]
        views.append(CustodyView(
            exam_session_id=session_id,
            status=classify(latest, viewer_id),
            latest_transfer=latest,
            pending_transfer_count=pending_transfer_count(group),
            transfers=group,
        ))
    views.sort(key=lambda v: v.latest_transfer.requested_at, reverse=True)
    return views


def current_custodian(transfers: Iterable) -> Optional[object]:
    """
    Handler holding the batch: ``to_handler_id`` of the most recently
    requested accepted transfer (CONFIRMED or RESOLVED), or None when no
    handoff was accepted yet.
    """
    accepted = [t for t in transfers if t.status in ACCEPTED_STATUSES]
    if not accepted:
        return None
    return max(accepted, key=lambda t: t.requested_at).to_handler_id


def custodians_by_session(transfers: Iterable) -> dict:
    return {
        sid: current_custodian(group)
        for sid, group in group_by_session(transfers).items()
    }
