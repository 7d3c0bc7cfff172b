"""
Core views – JSON session authentication for the dashboard and the mobile app.
"""
import logging

from axes.decorators import axes_dispatch
from django.contrib.auth import authenticate, login, logout, update_session_auth_hash
from django.contrib.auth.decorators import login_required
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.views.decorators.cache import never_cache
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_POST

from core.utils.audit import log_action
from core.utils.http import parse_json_body

logger = logging.getLogger(__name__)


@require_GET
@ensure_csrf_cookie
def csrf_view(request):
    """GET /api/auth/csrf – sets the csrftoken cookie for API clients."""
    return JsonResponse({'detail': 'CSRF cookie set'})


@axes_dispatch
@never_cache
@require_POST
def login_view(request):
    """POST /api/auth/login"""
    data, err = parse_json_body(request)
    if err:
        return err

    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password:
        return JsonResponse({'error': 'Username and password are required'}, status=400)

    user = authenticate(request, username=username, password=password)
    if user is None:
        return JsonResponse({'error': 'Invalid credentials'}, status=401)
    if not user.is_active:
        return JsonResponse({'error': 'Account is deactivated'}, status=403)

    login(request, user)
    log_action(request, 'LOGIN', 'User', user.pk)
    return JsonResponse({'message': 'Logged in', 'user': user.to_dict()})


@require_POST
def logout_view(request):
    """POST /api/auth/logout"""
    if request.user.is_authenticated:
        log_action(request, 'LOGOUT', 'User', request.user.pk)
    logout(request)
    return JsonResponse({'message': 'Logged out'})


@login_required
@require_GET
def me_view(request):
    """GET /api/auth/me"""
    return JsonResponse({'user': request.user.to_dict()})


@login_required
@require_POST
def change_password_view(request):
    """POST /api/auth/change-password"""
    data, err = parse_json_body(request)
    if err:
        return err

    user = request.user
    if not user.check_password(data.get('current_password') or ''):
        return JsonResponse({'error': 'Current password is incorrect'}, status=400)

    new_password = data.get('new_password') or ''
    try:
        validate_password(new_password, user)
    except ValidationError as exc:
        return JsonResponse({'error': 'Password rejected', 'details': exc.messages}, status=400)

    user.set_password(new_password)
    user.save()
    update_session_auth_hash(request, user)
    log_action(request, 'CHANGE_PASSWORD', 'User', user.pk)
    logger.info('Password changed for user %s', user.username)
    return JsonResponse({'message': 'Password changed'})
