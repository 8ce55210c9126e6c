"""
Django settings for serving and testing the stateforge app.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'stateforge-development-key')

DEBUG = os.environ.get('DJANGO_DEBUG', '1') == '1'

ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.staticfiles',
    'stateforge',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
]

ROOT_URLCONF = 'stateforge_project.urls'

WSGI_APPLICATION = 'stateforge_project.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

LANGUAGE_CODE = 'en-gb'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Uploaded .jff / .json files are small; keep them in memory
FILE_UPLOAD_MAX_MEMORY_SIZE = 5 * 1024 * 1024

STATEFORGE = {
    'APP_NAME': 'StateForge',
    'MAX_STEPS': 1000,
    'MAX_CONFIGURATIONS': 10000,
    'PDA_ACCEPTANCE': 'final-state',
    'INITIAL_STACK_SYMBOL': 'Z',
    'BLANK_SYMBOL': '⊔',
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'standard': {
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'datefmt': '%H:%M:%S',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'standard',
        },
    },
    'loggers': {
        'stateforge': {
            'handlers': ['console'],
            'level': os.environ.get('STATEFORGE_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
