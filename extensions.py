"""
Extensões compartilhadas do Nexus Financeiro
============================================

``db`` e ``migrate`` são criados aqui e ligados ao app em ``create_app``;
modelos e blueprints importam daqui para evitar import circular com
``application``.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

from config_db import get_database_url, init_database, get_db_stats  # noqa: E402


def get_current_db_url():
    """URL do banco resolvida a partir do ambiente (DATABASE_URL ou SQLite local)."""
    return get_database_url()


__all__ = [
    'db',
    'migrate',
    'get_current_db_url',
    'init_database',
    'get_db_stats',
]
