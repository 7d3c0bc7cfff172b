"""
Root URL configuration for the custody tracking project.
"""
from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import path, include
from core.views import csrf_view, login_view, logout_view, me_view, change_password_view

urlpatterns = [
    # Session authentication
    path('api/auth/csrf', csrf_view, name='csrf'),
    path('api/auth/login', login_view, name='login'),
    path('api/auth/logout', logout_view, name='logout'),
    path('api/auth/me', me_view, name='me'),
    path('api/auth/change-password', change_password_view, name='change_password'),
    # Secret admin URL – path driven entirely by SECRET_ADMIN_URL in .env
    path(f"{settings.SECRET_ADMIN_URL}/", admin.site.urls),
    # Dashboard must be before the tracking include, which is mounted at api/
    path('api/dashboard/', include('dashboard.api_urls')),
    path('api/', include('tracking.api_urls')),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)

# Custom error handlers
handler404 = 'core.error_handlers.handler404'
handler500 = 'core.error_handlers.handler500'
handler403 = 'core.error_handlers.handler403'
handler400 = 'core.error_handlers.handler400'
