"""
Dashboard API – Audit trail browser (admin only).
"""
from datetime import datetime, time, timezone

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET

from core.models import AuditLog
from core.utils.http import paginate, parse_date, parse_uuid
from core.utils.permissions import admin_required


def _day_bound(value, end=False):
    day = parse_date(value)
    if day is None:
        return None
    return int(datetime.combine(day, time.max if end else time.min, tzinfo=timezone.utc).timestamp())


@login_required
@require_GET
@admin_required
def audit_logs(request):
    """
    GET /api/dashboard/audit-logs

    Filters: user_id, action, entity, entity_id, date_from, date_to.
    """
    qs = AuditLog.objects.all()

    user_id = parse_uuid(request.GET.get('user_id'))
    if user_id:
        qs = qs.filter(user_id=user_id)
    for param in ('action', 'entity', 'entity_id'):
        if request.GET.get(param):
            qs = qs.filter(**{param: request.GET[param]})

    since = _day_bound(request.GET.get('date_from'))
    if since is not None:
        qs = qs.filter(timestamp__gte=since)
    until = _day_bound(request.GET.get('date_to'), end=True)
    if until is not None:
        qs = qs.filter(timestamp__lte=until)

    items, pagination = paginate(request, qs.order_by('-timestamp', '-id'))
    return JsonResponse({'logs': [log.to_dict() for log in items], 'pagination': pagination})


@login_required
@require_GET
@admin_required
def audit_actions(request):
    """GET /api/dashboard/audit-logs/actions"""
    actions = AuditLog.objects.order_by('action').values_list('action', flat=True).distinct()
    return JsonResponse({'actions': list(actions)})
