"""
Tracking API – Custody view: which batches the caller holds, is receiving or has handed over.
"""
from django.contrib.auth.decorators import login_required
from django.db.models import Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET

from core.models import BatchTransfer, ExamSession, User
from core.utils.custody import derive_custody_status, current_custodian


@login_required
@require_GET
def my_batches(request):
    """
    GET /api/custody/batches

    One row per exam session the caller has taken part in, classified from
    the latest transfer of that session.
    """
    user = request.user
    transfers = list(
        BatchTransfer.objects.filter(Q(from_handler=user) | Q(to_handler=user))
        .select_related('exam_session', 'from_handler', 'to_handler')
    )

    wanted = request.GET.get('status')
    batches = []
    for view in derive_custody_status(transfers, user.pk):
        if wanted and view.status != wanted:
            continue
        session = view.latest_transfer.exam_session
        batches.append({
            'exam_session': {
                'id': str(session.id),
                'batch_qr_code': session.batch_qr_code,
                'course_code': session.course_code,
                'course_name': session.course_name,
                'venue': session.venue,
                'exam_date': session.exam_date.isoformat(),
                'status': session.status,
            },
            'custody_status': view.status,
            'pending_transfer_count': view.pending_transfer_count,
            'latest_transfer': view.latest_transfer.to_dict(),
        })

    return JsonResponse({'batches': batches, 'total': len(batches)})


@login_required
@require_GET
def session_chain(request, session_id):
    """GET /api/custody/sessions/<id> – ordered custody chain and current custodian."""
    session = get_object_or_404(ExamSession, pk=session_id)
    chain = list(
        BatchTransfer.objects.filter(exam_session=session)
        .select_related('from_handler', 'to_handler')
        .order_by('requested_at')
    )

    custodian_id = current_custodian(chain)
    custodian = User.objects.filter(pk=custodian_id).first() if custodian_id else None

    return JsonResponse({
        'exam_session': session.to_dict(),
        'chain': [t.to_dict() for t in chain],
        'current_custodian': custodian.to_summary() if custodian else None,
        'viewer_holds_batch': custodian is not None and custodian.pk == request.user.pk,
    })
