from django.conf import settings
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path
from django.views.generic import RedirectView
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView, SpectacularSwaggerView


# ---------- Health / Readiness probes -----------------------------------------

def health_check(request):
    """Liveness probe, always returns 200 if the process is running."""
    return JsonResponse({"status": "ok"})


def readiness_check(request):
    """Readiness probe: checks database and cache connectivity."""
    from django.core.cache import cache
    from django.db import DatabaseError, connection

    checks = {"db": "ok", "cache": "ok"}
    status_code = 200

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
    except DatabaseError as exc:
        checks["db"] = str(exc)
        status_code = 503

    try:
        cache.set("_readiness_probe", "1", timeout=5)
        if cache.get("_readiness_probe") != "1":
            checks["cache"] = "read-back failed"
            status_code = 503
    except (ConnectionError, OSError) as exc:
        checks["cache"] = str(exc)
        status_code = 503

    overall = "ready" if status_code == 200 else "not_ready"
    return JsonResponse({"status": overall, **checks}, status=status_code)


urlpatterns = [
    path("", RedirectView.as_view(url="/admin/", permanent=False)),
    path("admin/", admin.site.urls),

    # Health probes (exempt from auth)
    path("api/v1/health/", health_check, name="health-check"),
    path("api/v1/readiness/", readiness_check, name="readiness-check"),

    path("api/v1/auth/", include("apps.authentication.urls")),
    path("api/v1/evv/", include("apps.evv.urls")),
]

if getattr(settings, "ENABLE_API_DOCS", False):
    urlpatterns += [
        path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
        path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
        path("api/redoc/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    ]
