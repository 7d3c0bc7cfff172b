"""
Access control and security header middleware for the custody API.
"""
from django.conf import settings
from django.http import JsonResponse


class RoleBasedAccessMiddleware:
    """
    Gatekeeper for /api/ routes:
        anonymous          -> 401 except the login and public link/registration routes
        non-admin          -> 403 on analytics, audit logs, registration QR codes and user writes
    Views still apply their own per-endpoint role checks.
    """

    OPEN_PATHS = ('/api/auth/login', '/api/auth/csrf', '/api/public/')
    ADMIN_PATHS = (
        '/api/dashboard/analytics', '/api/dashboard/audit-logs', '/api/dashboard/registration-sessions',
    )
    ADMIN_WRITE_PATHS = ('/api/dashboard/users',)
    SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS')

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        path = request.path
        if path.startswith('/api/') and not path.startswith(self.OPEN_PATHS):
            user = request.user
            if not user.is_authenticated:
                return JsonResponse({'error': 'Authentication required'}, status=401)
            if not user.is_active:
                return JsonResponse({'error': 'Account is deactivated'}, status=403)

            admin_only = path.startswith(self.ADMIN_PATHS) or (
                path.startswith(self.ADMIN_WRITE_PATHS)
                and request.method not in self.SAFE_METHODS
            )
            if admin_only and not user.is_admin:
                return JsonResponse({'error': 'Admin access required'}, status=403)

        return self.get_response(request)


class SessionTimeoutMiddleware:
    """
    Sets activity-based session expiry per API area:
    - Dashboard API: settings.API_SESSION_TIMEOUT
    - Handler API (transfers, custody, attendance): settings.HANDLER_SESSION_TIMEOUT
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if request.user.is_authenticated:
            if request.path.startswith('/api/dashboard/'):
                request.session.set_expiry(settings.API_SESSION_TIMEOUT)
            elif request.path.startswith('/api/') and not request.path.startswith('/api/auth/'):
                request.session.set_expiry(settings.HANDLER_SESSION_TIMEOUT)

        return self.get_response(request)


class ContentSecurityPolicyMiddleware:
    """
    Adds Content-Security-Policy header to all responses.
    The API serves JSON and file downloads only, so nothing may be embedded.
    """

    CSP_DIRECTIVES = {
        "default-src": "'none'",
        "img-src": "'self' data:",
        "frame-ancestors": "'none'",
        "form-action": "'self'",
        "base-uri": "'none'",
    }

    def __init__(self, get_response):
        self.get_response = get_response
        self.csp_value = "; ".join(
            f"{key} {value}" for key, value in self.CSP_DIRECTIVES.items()
        )

    def __call__(self, request):
        response = self.get_response(request)
        # Django admin needs its own scripts and styles
        if not request.path.startswith(f'/{settings.SECRET_ADMIN_URL}/'):
            response["Content-Security-Policy"] = self.csp_value
        return response


class ReferrerPolicyMiddleware:
    """Sets the Referrer-Policy header."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)
        response["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class PermissionsPolicyMiddleware:
    """Sets the Permissions-Policy header. Camera stays allowed for QR scanning."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)
        response["Permissions-Policy"] = (
            "camera=(self), microphone=(), geolocation=(self), payment=()"
        )
        return response
