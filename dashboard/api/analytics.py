"""
Dashboard API – Analytics (admin only): overview, handler performance,
discrepancies, exam statistics and the Excel report.

Every endpoint accepts optional ``start_date`` / ``end_date`` (YYYY-MM-DD).
Exam figures filter on ``exam_date``, transfer figures on ``requested_at``.
"""
from collections import Counter
from datetime import datetime, time, timedelta, timezone

from django.contrib.auth.decorators import login_required
from django.db.models import Count, Q
from django.http import JsonResponse
from django.views.decorators.http import require_GET

from core.models import BatchTransfer, ExamSession, User
from core.utils.audit import log_action
from core.utils.custody import ACCEPTED_STATUSES, custodians_by_session
from core.utils.http import parse_date
from core.utils.permissions import admin_required

from .reports import xlsx_response

DISCREPANCY_STATUSES = (BatchTransfer.STATUS_DISCREPANCY_REPORTED, BatchTransfer.STATUS_RESOLVED)


def _date_range(request):
    return parse_date(request.GET.get('start_date')), parse_date(request.GET.get('end_date'))


def _exam_filter(start, end):
    q = Q()
    if start:
        q &= Q(exam_date__gte=start)
    if end:
        q &= Q(exam_date__lte=end)
    return q


def _transfer_filter(start, end):
    q = Q()
    if start:
        q &= Q(requested_at__gte=datetime.combine(start, time.min, tzinfo=timezone.utc))
    if end:
        q &= Q(requested_at__lte=datetime.combine(end, time.max, tzinfo=timezone.utc))
    return q


def _avg_hours(pairs):
    """Mean of (confirmed_at - requested_at) in hours over ``pairs``."""
    durations = [(confirmed - requested).total_seconds() for requested, confirmed in pairs]
    return round(sum(durations) / len(durations) / 3600, 2) if durations else 0


def _rate(part, whole):
    return round(part / whole * 100, 2) if whole else 0


# ── Computations ────────────────────────────────────────────────────────────

def overview_data(start=None, end=None):
    exams = ExamSession.objects.filter(_exam_filter(start, end))
    transfers = BatchTransfer.objects.filter(_transfer_filter(start, end))

    today = datetime.now(timezone.utc).date()
    month_start = int(datetime.combine(today.replace(day=1), time.min, tzinfo=timezone.utc).timestamp())
    total_transfers = transfers.count()
    total_discrepancies = transfers.filter(status__in=DISCREPANCY_STATUSES).count()

    since = today - timedelta(days=30)
    by_day = Counter(
        d.isoformat() for d in
        ExamSession.objects.filter(exam_date__gte=since).values_list('exam_date', flat=True)
    )

    return {
        'overview': {
            'totalExams': exams.count(),
            'examsThisMonth': ExamSession.objects.filter(created_at__gte=month_start).count(),
            'activeBatches': ExamSession.objects.exclude(status=ExamSession.STATUS_COMPLETED).count(),
            'totalHandlers': User.objects.handlers().exclude(role=User.ROLE_ADMIN).count(),
            'totalDiscrepancies': total_discrepancies,
            'discrepancyRate': _rate(total_discrepancies, total_transfers),
            'avgTransferTimeHours': _avg_hours(
                transfers.filter(status=BatchTransfer.STATUS_CONFIRMED, confirmed_at__isnull=False)
                .values_list('requested_at', 'confirmed_at')
            ),
        },
        'trends': {'examsByDay': dict(sorted(by_day.items()))},
    }


def handler_performance_data(start=None, end=None):
    window = _transfer_filter(start, end)
    open_chains = BatchTransfer.objects.filter(
        status__in=ACCEPTED_STATUSES,
    ).exclude(exam_session__status=ExamSession.STATUS_COMPLETED)
    holdings = Counter(str(h) for h in custodians_by_session(open_chains).values())

    rows = []
    for handler in User.objects.handlers().exclude(role=User.ROLE_ADMIN):
        received = BatchTransfer.objects.filter(window, to_handler=handler)
        initiated = BatchTransfer.objects.filter(window, from_handler=handler)
        n_received, n_initiated = received.count(), initiated.count()
        total = n_received + n_initiated
        discrepancies = BatchTransfer.objects.filter(
            window, Q(from_handler=handler) | Q(to_handler=handler),
            status__in=DISCREPANCY_STATUSES,
        ).count()

        rows.append({
            'handler': {
                'id': str(handler.id),
                'name': handler.full_name,
                'email': handler.email,
                'role': handler.role,
                'department': handler.department,
            },
            'metrics': {
                'totalTransfers': total,
                'transfersReceived': n_received,
                'transfersInitiated': n_initiated,
                'avgResponseTimeHours': _avg_hours(
                    received.filter(confirmed_at__isnull=False).values_list('requested_at', 'confirmed_at')
                ),
                'discrepancies': discrepancies,
                'discrepancyRate': _rate(discrepancies, total),
                'currentCustody': holdings[str(handler.id)],
            },
        })

    rows.sort(key=lambda r: r['metrics']['totalTransfers'], reverse=True)
    return rows


def discrepancies_data(start=None, end=None):
    transfers = list(
        BatchTransfer.objects.filter(_transfer_filter(start, end), status__in=DISCREPANCY_STATUSES)
        .select_related('exam_session', 'from_handler', 'to_handler')
        .order_by('-requested_at')
    )
    resolved = sum(1 for t in transfers if t.status == BatchTransfer.STATUS_RESOLVED)

    recent = []
    for t in transfers[:20]:
        row = t.to_dict()
        row['exam_session'] = {
            'id': str(t.exam_session_id),
            'batch_qr_code': t.exam_session.batch_qr_code,
            'course_code': t.exam_session.course_code,
            'department': t.exam_session.department,
        }
        recent.append(row)

    return {
        'summary': {
            'total': len(transfers),
            'resolved': resolved,
            'unresolved': len(transfers) - resolved,
            'resolutionRate': _rate(resolved, len(transfers)),
        },
        'breakdown': {
            'byStatus': dict(Counter(t.status for t in transfers)),
            'byDepartment': dict(Counter(t.exam_session.department or 'Unassigned' for t in transfers)),
        },
        'trend': dict(sorted(Counter(t.requested_at.date().isoformat() for t in transfers).items())),
        'recentDiscrepancies': recent,
    }


def exam_stats_data(start=None, end=None):
    exams = ExamSession.objects.filter(_exam_filter(start, end))

    def grouped(field):
        return {
            (row[field] or 'Unassigned'): row['n']
            for row in exams.order_by().values(field).annotate(n=Count('id'))
        }

    total = exams.count()
    completed = exams.filter(status=ExamSession.STATUS_COMPLETED)
    processing = [
        (updated - created) / 86400
        for created, updated in completed.values_list('created_at', 'updated_at')
        if created and updated
    ]
    attendance_counts = list(
        exams.annotate(n=Count('attendances')).values_list('n', flat=True)
    )

    return {
        'summary': {
            'totalExams': total,
            'completedExams': completed.count(),
            'completionRate': _rate(completed.count(), total),
            'avgProcessingTimeDays': round(sum(processing) / len(processing), 2) if processing else 0,
            'avgStudentsPerExam': (
                round(sum(attendance_counts) / len(attendance_counts), 1) if attendance_counts else 0
            ),
        },
        'breakdown': {
            'byStatus': grouped('status'),
            'byDepartment': grouped('department'),
            'byFaculty': grouped('faculty'),
            'byMonth': dict(sorted(Counter(
                d.strftime('%Y-%m') for d in exams.values_list('exam_date', flat=True)
            ).items())),
        },
    }


# ── Endpoints ───────────────────────────────────────────────────────────────

@login_required
@require_GET
@admin_required
def overview(request):
    """GET /api/dashboard/analytics/overview"""
    return JsonResponse(overview_data(*_date_range(request)))


@login_required
@require_GET
@admin_required
def handler_performance(request):
    """GET /api/dashboard/analytics/handler-performance"""
    return JsonResponse({'handlers': handler_performance_data(*_date_range(request))})


@login_required
@require_GET
@admin_required
def discrepancies(request):
    """GET /api/dashboard/analytics/discrepancies"""
    return JsonResponse(discrepancies_data(*_date_range(request)))


@login_required
@require_GET
@admin_required
def exam_stats(request):
    """GET /api/dashboard/analytics/exam-stats"""
    return JsonResponse(exam_stats_data(*_date_range(request)))


@login_required
@require_GET
@admin_required
def export_report(request):
    """GET /api/dashboard/analytics/export – one worksheet per analytics view."""
    start, end = _date_range(request)
    period = f"{start or 'beginning'} to {end or 'today'}"

    overview_ = overview_data(start, end)['overview']
    handlers = handler_performance_data(start, end)
    disc = discrepancies_data(start, end)
    stats = exam_stats_data(start, end)

    stats_rows = [['summary', key, value] for key, value in stats['summary'].items()]
    for name, values in stats['breakdown'].items():
        for key, count in values.items():
            stats_rows.append([name, key, count])

    sheets = [
        ('Overview', ['Metric', 'Value'], list(overview_.items()), f'Custody Analytics ({period})'),
        ('Handler Performance', [
            'Handler', 'Role', 'Department', 'Total', 'Received', 'Initiated',
            'Avg Response (h)', 'Discrepancies', 'Discrepancy %', 'Current Custody',
        ], [
            [h['handler']['name'], h['handler']['role'], h['handler']['department'],
             *(h['metrics'][k] for k in (
                 'totalTransfers', 'transfersReceived', 'transfersInitiated',
                 'avgResponseTimeHours', 'discrepancies', 'discrepancyRate', 'currentCustody'))]
            for h in handlers
        ]),
        ('Discrepancies', [
            'Batch', 'Course', 'Department', 'Expected', 'Received', 'Status', 'Note', 'Requested',
        ], [
            [d['exam_session']['batch_qr_code'], d['exam_session']['course_code'],
             d['exam_session']['department'], d['exams_expected'], d['exams_received'],
             d['status'], d['discrepancy_note'], d['requested_at']]
            for d in disc['recentDiscrepancies']
        ]),
        ('Exam Statistics', ['Breakdown', 'Key', 'Value'], stats_rows),
    ]

    log_action(request, 'EXPORT_ANALYTICS', 'Analytics', '', {'start': str(start), 'end': str(end)})
    return xlsx_response(sheets, f"custody_analytics_{datetime.now(timezone.utc):%Y%m%d}.xlsx")
