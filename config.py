"""
Configurações da aplicação Nexus Financeiro
===========================================

Todas as chaves são lidas do ambiente (.env carregado via python-dotenv).
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "t", "yes", "y", "on", "sim")


def _env_int(name: str, default: int) -> int:
    try:
        value = int(str(os.getenv(name, default)).strip())
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'chave_padrao_insegura')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Base pública do front-end (links de convite, retorno do Stripe)
    APP_BASE_URL = os.getenv('APP_BASE_URL', '').rstrip('/')

    # Token de API (Authorization: Bearer) válido por N horas
    TOKEN_MAX_AGE_HOURS = _env_int('TOKEN_MAX_AGE_HOURS', 24 * 7)

    # Convites de família
    INVITE_TTL_DAYS = _env_int('INVITE_TTL_DAYS', 7)

    # Automação n8n
    N8N_WEBHOOK_PREFIX = os.getenv('N8N_WEBHOOK_PREFIX', '').rstrip('/')
    N8N_TIMEOUT = _env_int('N8N_TIMEOUT', 15)

    # Stripe
    STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.getenv('STRIPE_WEBHOOK_SECRET')

    # Snapshot mensal (APScheduler)
    SUMMARY_REFRESH_ENABLED = _env_bool(os.getenv('SUMMARY_REFRESH_ENABLED', '0'))
    SUMMARY_REFRESH_MINUTES = _env_int('SUMMARY_REFRESH_MINUTES', 60)


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    APP_BASE_URL = 'http://localhost:5173'
    N8N_WEBHOOK_PREFIX = 'http://n8n.test/webhook'
    STRIPE_SECRET_KEY = 'sk_test_dummy'
    STRIPE_WEBHOOK_SECRET = 'whsec_dummy'
    SUMMARY_REFRESH_ENABLED = False
    MAIL_SUPPRESS_SEND = True
