"""
URL configuration for the rewardhub project.

Routes include administration, the rewards API, health checks, and metrics endpoints.
"""
import os

from django.contrib import admin
from django.http import HttpResponse
from django.urls import include, path
from prometheus_client import REGISTRY, CollectorRegistry, generate_latest, multiprocess

# Use multiprocess collector only if PROMETHEUS_MULTIPROC_DIR is set (production)
# Otherwise use default registry (development)
if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY


def health_check(request):
    return HttpResponse("OK", content_type="text/plain")


def rewards_metrics(request):
    payload = generate_latest(registry)
    return HttpResponse(payload, content_type="text/plain; version=0.0.4")


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/rewards/", include("rewards.urls", namespace="rewards")),
    path("health/", health_check, name="health_check"),
    path("metrics/", rewards_metrics, name="rewards_metrics"),
]
