from django.urls import path
from . import views


urlpatterns = [
    path('api/setup-status/', views.setup_status_api, name='setup_status'),
    path('api/sessions/', views.sessions_api, name='sessions'),
    path('api/sessions/<uuid:session_id>/', views.session_detail_api, name='session_detail'),
    path('api/scrape/', views.scrape_api, name='scrape'),
    path('api/scrape-runs/', views.scrape_runs_api, name='scrape_runs'),
    path('api/profiles/', views.profiles_api, name='profiles'),
    path('api/profiles/update-draft/', views.update_draft_api, name='update_draft'),
    path('api/profiles/export/', views.export_profiles_api, name='export_profiles'),
    path('api/generate-dm/', views.generate_dm_api, name='generate_dm'),
    path('api/generate-dm/bulk/', views.generate_dm_bulk_api, name='generate_dm_bulk'),
    path('api/send-dm/', views.send_dm_api, name='send_dm'),
    path('api/dm-queue/', views.dm_queue_api, name='dm_queue'),
    path('api/dm-stats/', views.dm_stats_api, name='dm_stats'),
    path('api/campaigns/', views.campaigns_api, name='campaigns'),
    path('api/analytics/', views.analytics_api, name='analytics'),
    path('api/alerts/', views.alerts_api, name='alerts'),
]
