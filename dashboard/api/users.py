"""
Dashboard API – User management.

Reads are open to any signed-in user (the transfer screen needs the
handler list); writes are admin only.
"""
import logging

from django.contrib.auth.decorators import login_required
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.db.models import Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from core.models import User
from core.utils.audit import log_action
from core.utils.http import error, paginate, parse_json_body
from core.utils.permissions import admin_required

logger = logging.getLogger(__name__)

VALID_ROLES = [value for value, _ in User.ROLE_CHOICES]
PROFILE_FIELDS = ('first_name', 'last_name', 'department', 'faculty', 'phone')


@login_required
@require_http_methods(['GET', 'POST'])
def users(request):
    """GET/POST /api/dashboard/users"""
    if request.method == 'POST':
        return _create_user(request)

    qs = User.objects.all()
    if request.GET.get('role'):
        qs = qs.filter(role=request.GET['role'])
    if request.GET.get('department'):
        qs = qs.filter(department__iexact=request.GET['department'])
    is_active = request.GET.get('is_active')
    if is_active in ('true', 'false'):
        qs = qs.filter(is_active=is_active == 'true')
    search = (request.GET.get('search') or '').strip()
    if search:
        qs = qs.filter(
            Q(username__icontains=search) | Q(email__icontains=search)
            | Q(first_name__icontains=search) | Q(last_name__icontains=search)
        )

    items, pagination = paginate(request, qs)
    return JsonResponse({'users': [u.to_dict() for u in items], 'pagination': pagination})


@login_required
@require_GET
def handlers(request):
    """GET /api/dashboard/users/handlers – receiver picker for transfers."""
    qs = User.objects.handlers().exclude(pk=request.user.pk)
    if request.GET.get('role'):
        qs = qs.filter(role=request.GET['role'])
    return JsonResponse({'handlers': [u.to_summary() for u in qs]})


@admin_required
def _create_user(request):
    data, err = parse_json_body(request)
    if err:
        return err

    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    role = data.get('role') or User.ROLE_INVIGILATOR
    missing = [name for name, value in (
        ('username', username), ('email', email), ('password', password),
        ('first_name', data.get('first_name')), ('last_name', data.get('last_name')),
    ) if not value]
    if missing:
        return error(f"Missing required fields: {', '.join(missing)}")
    if role not in VALID_ROLES:
        return error('Invalid role', validRoles=VALID_ROLES)

    if User.objects.filter(username=username).exists():
        return error('Username already exists', status=409)
    if User.objects.filter(email=email).exists():
        return error('Email already exists', status=409)

    user = User(
        username=username, email=email, role=role,
        **{name: str(data.get(name) or '').strip() for name in PROFILE_FIELDS},
    )
    try:
        validate_password(password, user)
    except ValidationError as exc:
        return error('Password rejected', details=exc.messages)
    user.set_password(password)
    user.save()

    log_action(request, 'CREATE_USER', 'User', user.id, {'username': username, 'role': role})
    logger.info('User %s created with role %s by %s', username, role, request.user.username)
    return JsonResponse({'message': 'User created', 'user': user.to_dict()}, status=201)


@login_required
@require_http_methods(['GET', 'PUT', 'PATCH'])
def user_detail(request, user_id):
    """GET/PUT /api/dashboard/users/<id>"""
    user = get_object_or_404(User, pk=user_id)
    if request.method == 'GET':
        return JsonResponse({'user': user.to_dict()})
    return _update_user(request, user)


@admin_required
def _update_user(request, user):
    data, err = parse_json_body(request)
    if err:
        return err

    changed = []
    for name in PROFILE_FIELDS:
        if name in data:
            setattr(user, name, str(data.get(name) or '').strip())
            changed.append(name)

    if 'email' in data:
        email = (data.get('email') or '').strip().lower()
        if not email:
            return error('Email cannot be empty')
        if User.objects.filter(email=email).exclude(pk=user.pk).exists():
            return error('Email already exists', status=409)
        user.email = email
        changed.append('email')

    if 'role' in data:
        if data['role'] not in VALID_ROLES:
            return error('Invalid role', validRoles=VALID_ROLES)
        user.role = data['role']
        changed.append('role')

    if 'is_active' in data:
        if user.pk == request.user.pk and not data['is_active']:
            return error('You cannot deactivate your own account')
        user.is_active = bool(data['is_active'])
        changed.append('is_active')

    if data.get('password'):
        try:
            validate_password(data['password'], user)
        except ValidationError as exc:
            return error('Password rejected', details=exc.messages)
        user.set_password(data['password'])
        changed.append('password')

    user.save()
    log_action(request, 'UPDATE_USER', 'User', user.id, {'fields': changed})
    return JsonResponse({'message': 'User updated', 'user': user.to_dict()})


@login_required
@require_POST
@admin_required
def deactivate_user(request, user_id):
    """POST /api/dashboard/users/<id>/deactivate"""
    user = get_object_or_404(User, pk=user_id)
    if user.pk == request.user.pk:
        return error('You cannot deactivate your own account')
    if not user.is_active:
        return error('User is already inactive')

    user.is_active = False
    user.save(update_fields=['is_active'])
    log_action(request, 'DEACTIVATE_USER', 'User', user.id, {'username': user.username})
    logger.info('User %s deactivated by %s', user.username, request.user.username)
    return JsonResponse({'message': 'User deactivated', 'user': user.to_dict()})
