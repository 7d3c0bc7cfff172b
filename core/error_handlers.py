"""
Custom error handlers – JSON bodies only, no internals leaked.
"""
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import requires_csrf_token

logger = logging.getLogger(__name__)


@requires_csrf_token
def handler404(request, exception=None):
    return JsonResponse({'error': 'Not found'}, status=404)


@requires_csrf_token
def handler500(request):
    logger.error('Unhandled server error on %s %s', request.method, request.path)
    return JsonResponse({'error': 'Internal server error'}, status=500)


@requires_csrf_token
def handler403(request, exception=None):
    return JsonResponse({'error': 'Forbidden'}, status=403)


@requires_csrf_token
def handler400(request, exception=None):
    return JsonResponse({'error': 'Bad request'}, status=400)
