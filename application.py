# application.py
"""
Fábrica da aplicação Nexus Financeiro
=====================================

``create_app()`` monta o Flask com banco, email, CORS, blueprints da API,
comandos de CLI e o scheduler que atualiza os resumos mensais.
O objeto WSGI fica em ``wsgi.py``.
"""

import logging
import os
from datetime import datetime

import click
from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from config import Config
from email_service import init_mail
from extensions import db, get_current_db_url, get_db_stats, init_database, migrate
from global_blueprints import register_blueprints, register_error_handlers

# Carregar variáveis de ambiente
load_dotenv()

logger = logging.getLogger(__name__)


def create_app(config_object=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )

    # Configuração do banco usando config_db.py
    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        app.config['SQLALCHEMY_DATABASE_URI'] = get_current_db_url()

    # Inicializar extensões
    db.init_app(app)
    migrate.init_app(app, db)
    init_mail(app)

    # Front-end (SPA) em outra origem consome /api/* com cookie de sessão ou Bearer
    CORS(app, resources={
        r"/api/*": {
            "origins": os.getenv('CORS_ORIGINS', '*').split(','),
            "methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "Stripe-Signature"],
            "supports_credentials": True,
        }
    })

    register_blueprints(app)
    register_error_handlers(app)

    @app.after_request
    def add_no_cache_headers(response):
        """Respostas da API nunca ficam em cache no navegador."""
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'
        return response

    @app.cli.command('init-db')
    def init_db_command():
        """Cria as tabelas no banco configurado e popula o catálogo inicial."""
        with app.app_context():
            init_database()
        click.echo('✅ Banco inicializado com sucesso!')

    @app.cli.command('db-stats')
    def db_stats_command():
        """Mostra estatísticas do banco de dados."""
        with app.app_context():
            stats = get_db_stats()
        click.echo(f"📊 Estatísticas do Banco: {stats['type']}")
        click.echo(f"🔗 Status: {stats['status']}")
        if stats.get('tables'):
            click.echo(f"📋 Tabelas: {', '.join(stats['tables'])}")
        if stats.get('connections'):
            click.echo(f"🔗 Conexões: {stats['connections']}")

    @app.cli.command('refresh-summaries')
    @click.option('--month', default=None, help='Mês no formato YYYY-MM (padrão: mês atual).')
    def refresh_summaries_command(month):
        """Recalcula os resumos mensais de todos os usuários."""
        from modulos.financeiro.analytics import refresh_monthly_summaries

        y = m = None
        if month:
            try:
                parsed = datetime.strptime(month, '%Y-%m')
            except ValueError:
                raise click.BadParameter('Use o formato YYYY-MM', param_hint='--month')
            y, m = parsed.year, parsed.month

        with app.app_context():
            count = refresh_monthly_summaries(y, m)
        click.echo(f'✅ Resumos atualizados para {count} usuários')

    _iniciar_scheduler_resumos(app)

    return app


def _iniciar_scheduler_resumos(app: Flask):
    """Inicia o scheduler em background que atualiza monthly_summaries.

    Se SUMMARY_REFRESH_ENABLED estiver desligado (ou em testes), não é iniciado.
    """
    if app.config.get('TESTING') or not app.config.get('SUMMARY_REFRESH_ENABLED'):
        logger.info("[scheduler] SUMMARY_REFRESH_ENABLED desativado. Scheduler não será iniciado.")
        return None

    # Com o reloader do Flask em debug, só o processo filho inicia o scheduler
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return None

    from modulos.financeiro.analytics import refresh_monthly_summaries

    intervalo_min = int(app.config.get('SUMMARY_REFRESH_MINUTES') or 60)

    def _job_resumos():
        """Wrapper que garante contexto da aplicação ao rodar o job."""
        with app.app_context():
            try:
                refresh_monthly_summaries()
            except Exception as e:
                db.session.rollback()
                logger.exception("[scheduler] erro ao atualizar resumos: %s", e)

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        _job_resumos,
        "interval",
        minutes=intervalo_min,
        id="monthly_summaries_job",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("[scheduler] resumos mensais a cada %s min", intervalo_min)
    return scheduler
