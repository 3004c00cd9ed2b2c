import json
import logging
import re
from functools import wraps

from django.http import HttpResponse, JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from . import services
from .exceptions import OutreachError, ValidationError

logger = logging.getLogger(__name__)

_CAMEL = re.compile(r'(?<!^)(?=[A-Z])')


def _json_body(request):
    """Request JSON with camelCase keys turned into snake_case form field names."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON body")
    return {_CAMEL.sub('_', key).lower(): value for key, value in data.items()}


def api_endpoint(failure_message):
    """Turn a view returning plain data into a JSON endpoint with the console's error contract."""
    def decorator(view):
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            try:
                result = view(request, *args, **kwargs)
            except OutreachError as e:
                logger.warning(f"{request.method} {request.path}: {e.message}")
                return JsonResponse(e.as_dict(), status=e.status_code)
            except Exception as e:
                logger.error(f"{failure_message}: {e}", exc_info=True)
                return JsonResponse({'error': failure_message}, status=500)
            if isinstance(result, HttpResponse):
                return result
            return JsonResponse(result, safe=False)
        return csrf_exempt(wrapper)
    return decorator


@require_http_methods(["GET"])
@api_endpoint("Failed to check setup status")
def setup_status_api(request):
    return services.setup_status()


@require_http_methods(["GET", "POST"])
@api_endpoint("Failed to process session request")
def sessions_api(request):
    if request.method == "POST":
        return services.create_session(_json_body(request))
    return services.list_sessions(role=request.GET.get('type') or None)


@require_http_methods(["DELETE"])
@api_endpoint("Failed to delete session")
def session_detail_api(request, session_id):
    return services.delete_session(session_id)


@require_http_methods(["POST"])
@api_endpoint("Failed to start scraping")
def scrape_api(request):
    return services.start_scrape(_json_body(request))


@require_http_methods(["GET"])
@api_endpoint("Failed to fetch scrape runs")
def scrape_runs_api(request):
    return services.list_scrape_runs()


@require_http_methods(["GET"])
@api_endpoint("Failed to fetch profiles")
def profiles_api(request):
    return services.list_profiles(status=request.GET.get('status') or None)


@require_http_methods(["POST"])
@api_endpoint("Failed to update draft")
def update_draft_api(request):
    return services.update_draft(_json_body(request))


@require_http_methods(["GET"])
@api_endpoint("Failed to export profiles")
def export_profiles_api(request):
    response = HttpResponse(
        services.export_profiles_csv(status=request.GET.get('status') or None),
        content_type='text/csv',
    )
    response['Content-Disposition'] = (
        f'attachment; filename="profiles_export_{timezone.now().strftime("%Y%m%d_%H%M%S")}.csv"'
    )
    return response


@require_http_methods(["POST"])
@api_endpoint("Failed to generate DM")
def generate_dm_api(request):
    return services.generate_draft(_json_body(request))


@require_http_methods(["POST"])
@api_endpoint("Failed to generate bulk DMs")
def generate_dm_bulk_api(request):
    return services.generate_drafts(_json_body(request))


@require_http_methods(["POST"])
@api_endpoint("Failed to queue DM")
def send_dm_api(request):
    return services.queue_dm(_json_body(request))


@require_http_methods(["GET"])
@api_endpoint("Failed to fetch queued DMs")
def dm_queue_api(request):
    return services.list_queue(status=request.GET.get('status') or None)


@require_http_methods(["GET"])
@api_endpoint("Failed to fetch stats")
def dm_stats_api(request):
    return services.dm_stats()


@require_http_methods(["GET", "POST"])
@api_endpoint("Failed to process campaign request")
def campaigns_api(request):
    if request.method == "POST":
        return services.create_campaign(_json_body(request))
    return services.list_campaigns()


@require_http_methods(["GET"])
@api_endpoint("Failed to fetch analytics")
def analytics_api(request):
    return services.analytics()


@require_http_methods(["GET"])
@api_endpoint("Failed to fetch alerts")
def alerts_api(request):
    return services.recent_alerts()
