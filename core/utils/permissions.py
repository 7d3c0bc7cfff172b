"""
Role checks for the JSON API.
"""
from functools import wraps

from django.http import JsonResponse


def role_required(*roles):
    """
    Allow the view only for users holding one of ``roles``.

    Admins (role ADMIN or superuser) always pass. Apply below
    ``@login_required`` so anonymous users are handled first.
    """
    def decorator(view_func):
        @wraps(view_func)
        def _wrapped(request, *args, **kwargs):
            if not request.user.has_role(*roles):
                return JsonResponse(
                    {'error': 'Insufficient permissions', 'required_roles': list(roles)},
                    status=403,
                )
            return view_func(request, *args, **kwargs)
        return _wrapped
    return decorator


def admin_required(view_func):
    return role_required()(view_func)
