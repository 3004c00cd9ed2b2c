import os
from pathlib import Path
from celery.schedules import crontab

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-outreach-console-dev-key-change-me')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'True') == 'True'

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    "django_extensions",
    'outreach',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'console.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'console.wsgi.application'

# Database - Use PostgreSQL when DATABASE_URL is set, otherwise SQLite
import dj_database_url

DATABASE_URL = os.getenv('DATABASE_URL')
if DATABASE_URL:
    DATABASES = {
        'default': dj_database_url.config(
            default=DATABASE_URL,
            conn_max_age=600,
            conn_health_checks=True,
        )
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'instagram_automation.sqlite3',
        }
    }

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = os.getenv('STATIC_URL', '/static/')
STATIC_ROOT = os.path.join(BASE_DIR, 'staticfiles')

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {'format': '%(asctime)s %(levelname)s %(name)s: %(message)s'},
    },
    'handlers': {
        'console': {'class': 'logging.StreamHandler', 'formatter': 'simple'},
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'outreach': {
            'handlers': ['console'],
            'level': os.getenv('OUTREACH_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

# Celery settings
CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'

REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))

# External providers. A blank credential means "not configured".
APIFY_API_TOKEN = os.getenv('APIFY_API_TOKEN', '')
APIFY_API_URL = os.getenv('APIFY_API_URL', 'https://api.apify.com/v2')
APIFY_SCRAPER_ACTOR = os.getenv('APIFY_SCRAPER_ACTOR', 'apify/instagram-scraper')
APIFY_SENDER_ACTOR = os.getenv('APIFY_SENDER_ACTOR', 'your-username/igdm-apify-actor')
APIFY_USE_PROXY = os.getenv('APIFY_USE_PROXY', 'True') == 'True'
APIFY_RUN_TIMEOUT = int(os.getenv('APIFY_RUN_TIMEOUT', 0))  # seconds, 0 = actor default
APIFY_RUN_MEMORY = int(os.getenv('APIFY_RUN_MEMORY', 0))  # megabytes, 0 = actor default
APIFY_REQUEST_TIMEOUT = int(os.getenv('APIFY_REQUEST_TIMEOUT', 90))

OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
OPENAI_BASE_URL = os.getenv('OPENAI_BASE_URL') or None
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o')

# Job monitoring
SCRAPE_MONITOR_DELAY = int(os.getenv('SCRAPE_MONITOR_DELAY', 10))
DM_SEND_DELAY = int(os.getenv('DM_SEND_DELAY', 2))
SCRAPE_MONITOR_TIMEOUT = int(os.getenv('SCRAPE_MONITOR_TIMEOUT', 3600))
SEND_MONITOR_TIMEOUT = int(os.getenv('SEND_MONITOR_TIMEOUT', 300))
STALE_JOB_AFTER = int(os.getenv('STALE_JOB_AFTER', 900))

# Alert log size
ALERTS_MAX = int(os.getenv('ALERTS_MAX', 1000))
ALERTS_KEEP = int(os.getenv('ALERTS_KEEP', 900))

# Listing limits
SCRAPE_RUNS_LIST_LIMIT = int(os.getenv('SCRAPE_RUNS_LIST_LIMIT', 50))
PROFILES_LIST_LIMIT = int(os.getenv('PROFILES_LIST_LIMIT', 1000))

# Celery Beat Schedule
CELERY_BEAT_SCHEDULE = {
    'dispatch-due-dms': {
        'task': 'outreach.tasks.dispatch_due_dms_task',
        'schedule': 60,
    },
    'recover-stale-jobs': {
        'task': 'outreach.tasks.recover_stale_jobs_task',
        'schedule': crontab(minute='*/10'),
    },
    'clean-alerts': {
        'task': 'outreach.tasks.clean_alerts_task',
        'schedule': 3600,
    },
}
