"""
Tracking API – Batch transfer endpoints (initiate, confirm, reject, resolve, list, history).
"""
import logging

from django.contrib.auth.decorators import login_required
from django.db import transaction
from django.db.models import Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from core.events import TRANSFER_CONFIRMED, TRANSFER_REJECTED, TRANSFER_REQUESTED, publish_transfer
from core.models import BatchTransfer, ExamSession, User
from core.utils.audit import log_action
from core.utils.batches import advance_on_transfer_confirmed, advance_on_transfer_initiated
from core.utils.custody import current_custodian
from core.utils.http import error, parse_json_body, parse_uuid
from core.utils.permissions import admin_required, role_required

audit_logger = logging.getLogger('custody.audit')

TRANSFER_ROLES = (
    User.ROLE_INVIGILATOR, User.ROLE_LECTURER,
    User.ROLE_DEPARTMENT_HEAD, User.ROLE_FACULTY_OFFICER,
)


def _transfer_queryset():
    return BatchTransfer.objects.select_related('exam_session', 'from_handler', 'to_handler')


def _transfer_payload(transfer):
    data = transfer.to_dict()
    session = transfer.exam_session
    data['exam_session'] = {
        'id': str(session.id),
        'batch_qr_code': session.batch_qr_code,
        'course_code': session.course_code,
        'course_name': session.course_name,
        'status': session.status,
    }
    return data


def _strict_int(value):
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    if str(number) != str(value).strip():
        return None
    return number


# ── Collection ─────────────────────────────────────────────────────

@login_required
@require_http_methods(['GET', 'POST'])
def transfers(request):
    """GET/POST /api/transfers"""
    if request.method == 'POST':
        return _initiate_transfer(request)
    return _list_transfers(request)


@role_required(*TRANSFER_ROLES)
def _initiate_transfer(request):
    data, err = parse_json_body(request)
    if err:
        return err

    session_id = parse_uuid(data.get('exam_session_id'))
    to_handler_id = parse_uuid(data.get('to_handler_id'))
    if not session_id or not to_handler_id:
        return error('exam_session_id and to_handler_id are required')

    if to_handler_id == request.user.pk:
        return error('Cannot transfer to yourself')

    exams_expected = _strict_int(data.get('exams_expected'))
    if exams_expected is None or exams_expected <= 0:
        return error('exams_expected must be a positive integer')

    session = ExamSession.objects.filter(pk=session_id).first()
    if session is None:
        return error('Exam session not found', status=404)

    receiver = User.objects.filter(pk=to_handler_id, is_active=True).first()
    if receiver is None:
        return error('Receiving handler not found', status=404)
    if not receiver.is_handler:
        return error('Receiver cannot hold custody of exam scripts')

    with transaction.atomic():
        transfer = BatchTransfer.objects.create(
            exam_session=session,
            from_handler=request.user,
            to_handler=receiver,
            exams_expected=exams_expected,
            location=(data.get('location') or '').strip(),
            notes=(data.get('notes') or '').strip(),
        )
        advance_on_transfer_initiated(session, request.user)

    log_action(request, 'INITIATE_TRANSFER', 'BatchTransfer', transfer.id, {
        'exam_session_id': str(session.id),
        'to_handler_id': str(receiver.pk),
        'exams_expected': exams_expected,
    })
    audit_logger.info(
        'TRANSFER_INITIATED | transfer=%s | batch=%s | from=%s | to=%s | expected=%d',
        transfer.id, session.batch_qr_code, request.user.username, receiver.username, exams_expected,
    )
    publish_transfer(
        TRANSFER_REQUESTED, transfer.id, session, request.user.pk, receiver.pk,
        exams_expected=exams_expected,
    )

    transfer = _transfer_queryset().get(pk=transfer.pk)
    return JsonResponse({'message': 'Transfer initiated', 'transfer': _transfer_payload(transfer)}, status=201)


def _list_transfers(request):
    qs = _transfer_queryset()
    params = request.GET

    ids = {}
    for name in ('exam_session_id', 'from_handler_id', 'to_handler_id', 'handler_id'):
        if params.get(name):
            ids[name] = parse_uuid(params[name])
            if ids[name] is None:
                return error(f'{name} must be a valid UUID')

    if 'exam_session_id' in ids:
        qs = qs.filter(exam_session_id=ids['exam_session_id'])
    if params.get('status'):
        qs = qs.filter(status=params['status'])
    if 'from_handler_id' in ids:
        qs = qs.filter(from_handler_id=ids['from_handler_id'])
    if 'to_handler_id' in ids:
        qs = qs.filter(to_handler_id=ids['to_handler_id'])
    if 'handler_id' in ids:
        qs = qs.filter(Q(from_handler_id=ids['handler_id']) | Q(to_handler_id=ids['handler_id']))

    # Handlers only ever see handoffs they took part in
    if not request.user.is_admin:
        qs = qs.filter(Q(from_handler=request.user) | Q(to_handler=request.user))

    qs = qs.order_by('-requested_at')
    return JsonResponse({'transfers': [_transfer_payload(t) for t in qs]})


@login_required
@require_GET
def pending_transfers(request):
    """GET /api/transfers/pending – transfers waiting for the caller to confirm."""
    qs = _transfer_queryset().filter(
        to_handler=request.user, status=BatchTransfer.STATUS_PENDING,
    ).order_by('-requested_at')
    return JsonResponse({'transfers': [_transfer_payload(t) for t in qs]})


@login_required
@require_GET
def transfer_detail(request, transfer_id):
    """GET /api/transfers/<id>"""
    transfer = get_object_or_404(_transfer_queryset(), pk=transfer_id)
    if not request.user.is_admin and not transfer.involves(request.user):
        return error('Access denied', status=403)
    return JsonResponse({'transfer': _transfer_payload(transfer)})


# ── Receiver actions ───────────────────────────────────────────────

@login_required
@require_POST
def confirm_transfer(request, transfer_id):
    """
    POST /api/transfers/<id>/confirm

    Body: {"exams_received": int, "discrepancy_note": str?}
    A count different from exams_expected records a discrepancy.
    """
    data, err = parse_json_body(request)
    if err:
        return err

    exams_received = _strict_int(data.get('exams_received'))
    if exams_received is None or exams_received < 0:
        return error('exams_received must be a non-negative integer')
    note = (data.get('discrepancy_note') or '').strip()

    with transaction.atomic():
        # Lock the row so two confirmations cannot both see PENDING
        transfer = get_object_or_404(
            BatchTransfer.objects.select_for_update(), pk=transfer_id,
        )
        if transfer.to_handler_id != request.user.pk:
            return error('Only the receiving handler can confirm this transfer', status=403)
        if transfer.status != BatchTransfer.STATUS_PENDING:
            return error(f'Transfer already {transfer.status.lower()}', currentStatus=transfer.status)

        mismatch = exams_received != transfer.exams_expected
        transfer.exams_received = exams_received
        transfer.confirmed_at = timezone.now()
        transfer.status = (
            BatchTransfer.STATUS_DISCREPANCY_REPORTED if mismatch else BatchTransfer.STATUS_CONFIRMED
        )
        if note:
            transfer.discrepancy_note = note
        elif mismatch:
            transfer.discrepancy_note = (
                f'Expected {transfer.exams_expected} scripts, received {exams_received}'
            )
        transfer.save()

        transfer = _transfer_queryset().get(pk=transfer.pk)
        new_status = None
        if not mismatch:
            new_status = advance_on_transfer_confirmed(transfer, request.user)

    action = 'CONFIRM_TRANSFER_WITH_DISCREPANCY' if mismatch else 'CONFIRM_TRANSFER'
    log_action(request, action, 'BatchTransfer', transfer.id, {
        'exams_expected': transfer.exams_expected,
        'exams_received': exams_received,
        'discrepancy_note': transfer.discrepancy_note or None,
        'batch_status': new_status,
    })
    audit_logger.info(
        'TRANSFER_CONFIRMED | transfer=%s | receiver=%s | expected=%d | received=%d | status=%s',
        transfer.id, request.user.username, transfer.exams_expected, exams_received, transfer.status,
    )
    publish_transfer(
        TRANSFER_CONFIRMED, transfer.id, transfer.exam_session,
        transfer.from_handler_id, transfer.to_handler_id,
        status=transfer.status, exams_received=exams_received,
    )

    transfer.exam_session.refresh_from_db()
    return JsonResponse({
        'message': 'Transfer confirmed with discrepancy' if mismatch else 'Transfer confirmed',
        'transfer': _transfer_payload(transfer),
    })


@login_required
@require_POST
def reject_transfer(request, transfer_id):
    """POST /api/transfers/<id>/reject – the receiver declines; the request is removed."""
    data, err = parse_json_body(request)
    if err:
        return err

    with transaction.atomic():
        transfer = get_object_or_404(
            BatchTransfer.objects.select_for_update(), pk=transfer_id,
        )
        if transfer.to_handler_id != request.user.pk:
            return error('Only the receiving handler can reject this transfer', status=403)
        if transfer.status != BatchTransfer.STATUS_PENDING:
            return error(f'Transfer already {transfer.status.lower()}', currentStatus=transfer.status)

        details = {
            'exam_session_id': str(transfer.exam_session_id),
            'from_handler_id': str(transfer.from_handler_id),
            'exams_expected': transfer.exams_expected,
            'reason': (data.get('reason') or '').strip() or None,
        }
        session = transfer.exam_session
        transfer_pk = transfer.pk
        transfer.delete()

    log_action(request, 'REJECT_TRANSFER', 'BatchTransfer', transfer_pk, details)
    audit_logger.info(
        'TRANSFER_REJECTED | transfer=%s | receiver=%s | reason=%s',
        transfer_pk, request.user.username, details['reason'],
    )
    publish_transfer(
        TRANSFER_REJECTED, transfer_pk, session, details['from_handler_id'], request.user.pk,
        rejection_reason=details['reason'],
    )
    return JsonResponse({'message': 'Transfer rejected'})


@login_required
@require_POST
@admin_required
def resolve_transfer(request, transfer_id):
    """POST /api/transfers/<id>/resolve – admin closes a reported discrepancy."""
    data, err = parse_json_body(request)
    if err:
        return err

    resolution = (data.get('resolution_note') or '').strip()
    if not resolution:
        return error('resolution_note is required')

    with transaction.atomic():
        transfer = get_object_or_404(
            BatchTransfer.objects.select_for_update(), pk=transfer_id,
        )
        if transfer.status != BatchTransfer.STATUS_DISCREPANCY_REPORTED:
            return error(
                'Only transfers with a reported discrepancy can be resolved',
                currentStatus=transfer.status,
            )
        transfer.status = BatchTransfer.STATUS_RESOLVED
        transfer.resolution_note = resolution
        transfer.resolved_at = timezone.now()
        transfer.resolved_by = request.user
        transfer.save()

    log_action(request, 'RESOLVE_TRANSFER_DISCREPANCY', 'BatchTransfer', transfer.id, {
        'exams_expected': transfer.exams_expected,
        'exams_received': transfer.exams_received,
        'resolution_note': resolution,
    })
    transfer = _transfer_queryset().get(pk=transfer.pk)
    return JsonResponse({'message': 'Discrepancy resolved', 'transfer': _transfer_payload(transfer)})


# ── History ────────────────────────────────────────────────────────

@login_required
@require_GET
def transfer_history(request, session_id):
    """GET /api/transfers/history/<session_id> – full chain, oldest first."""
    session = get_object_or_404(ExamSession, pk=session_id)
    chain = list(_transfer_queryset().filter(exam_session=session).order_by('requested_at'))

    custodian_id = current_custodian(chain)
    custodian = next(
        (t.to_handler for t in chain if t.to_handler_id == custodian_id), None,
    ) if custodian_id else None

    return JsonResponse({
        'exam_session': session.to_dict(),
        'transfers': [t.to_dict() for t in chain],
        'current_custodian': custodian.to_summary() if custodian else None,
    })
