"""
Configuração Centralizada do Banco de Dados - Nexus Financeiro
=============================================================

Suporte a múltiplos bancos:
- PostgreSQL (produção, inclusive o Postgres hospedado do Supabase)
- SQLite (desenvolvimento/local)

Uso:
    from config_db import get_database_url, init_database, get_db_stats

    url = get_database_url()
    init_database()      # dentro de app_context
    stats = get_db_stats()
"""

import os
from typing import Dict, Any
from urllib.parse import urlparse

from dotenv import load_dotenv
from sqlalchemy import text

load_dotenv()

# SQLite local quando DATABASE_URL não está definida
DEFAULT_SQLITE_PATH = './instance/nexus_financeiro.db'

# Categorias globais (user_id nulo): (nome, ícone, tipo, filhas)
GLOBAL_CATEGORIES = [
    ("Moradia", "home", "despesa", ["Aluguel", "Condomínio", "Energia", "Água", "Internet"]),
    ("Alimentação", "utensils", "despesa", ["Supermercado", "Restaurantes", "Delivery"]),
    ("Transporte", "car", "despesa", ["Combustível", "Transporte Público", "Aplicativos"]),
    ("Saúde", "heart-pulse", "despesa", ["Farmácia", "Plano de Saúde", "Consultas"]),
    ("Educação", "graduation-cap", "despesa", ["Cursos", "Material Escolar"]),
    ("Lazer", "gamepad", "despesa", ["Streaming", "Viagens", "Passeios"]),
    ("Vestuário", "shirt", "despesa", []),
    ("Outros Gastos", "wallet", "despesa", []),
    ("Salário", "briefcase", "receita", []),
    ("Renda Extra", "trending-up", "receita", ["Freelance", "Vendas"]),
    ("Investimentos", "piggy-bank", "receita", []),
]

GOAL_TEMPLATES = [
    {
        "name": "Reserva de Emergência",
        "description": "Guardar de 3 a 6 meses do custo de vida para imprevistos.",
        "plans": [
            ("Construindo a Reserva", [
                ("Calcule seu custo de vida", "Some as despesas fixas e variáveis de um mês típico."),
                ("Defina o valor alvo", "Multiplique o custo de vida por 6."),
                ("Automatize o aporte", "Programe uma transferência mensal logo após receber."),
                ("Escolha onde guardar", "Prefira aplicações com liquidez diária."),
            ]),
        ],
    },
    {
        "name": "Quitar Dívidas",
        "description": "Organizar e eliminar dívidas começando pelos juros mais altos.",
        "plans": [
            ("Saindo do Vermelho", [
                ("Liste todas as dívidas", "Anote saldo, juros e parcela de cada uma."),
                ("Priorize pelos juros", "Ataque primeiro a dívida com maior taxa."),
                ("Negocie", "Procure os credores para reduzir juros ou parcelar."),
            ]),
        ],
    },
    {
        "name": "Viagem",
        "description": "Juntar dinheiro para uma viagem planejada.",
        "plans": [],
    },
    {
        "name": "Aposentadoria",
        "description": "Investir a longo prazo para a independência financeira.",
        "plans": [],
    },
]

DIAGNOSTIC_QUESTIONS = [
    ("Quanto você recebe em um mês típico?", "income_input_typical", 1),
    ("E em um mês muito bom?", "income_input_best", 2),
    ("E em um mês ruim?", "income_input_worst", 3),
    ("Quanto custa o seu mês (custo de vida)?", "cost_of_living_reported", 4),
]


def _detect_db_type(database_url: str | None) -> str:
    if not database_url:
        return 'sqlite'
    scheme = urlparse(database_url).scheme
    if scheme.startswith('postgres'):
        return 'postgresql'
    if scheme.startswith('sqlite'):
        return 'sqlite'
    # Fallback para PostgreSQL se não reconhecer
    return 'postgresql'


def get_database_url() -> str:
    """
    Retorna a URL de conexão SQLAlchemy.

    DATABASE_URL tem prioridade; sem ela usa SQLite local (SQLITE_PATH).
    """
    database_url = os.getenv('DATABASE_URL')
    if database_url:
        # Render/Heroku ainda entregam o esquema antigo
        if database_url.startswith('postgres://'):
            database_url = 'postgresql://' + database_url[len('postgres://'):]
        return database_url

    return f"sqlite:///{os.getenv('SQLITE_PATH', DEFAULT_SQLITE_PATH)}"


def init_database(seed: bool = True):
    """
    Cria as tabelas e popula o catálogo inicial (categorias globais,
    modelos de metas e perguntas do diagnóstico).

    Deve ser chamado dentro de um app_context.
    """
    from extensions import db
    import models  # noqa: F401  (registra as tabelas no metadata)

    db.create_all()
    print("✅ Tabelas criadas/atualizadas com sucesso!")

    if seed:
        _seed_initial_data()

    db.session.execute(text("SELECT 1"))
    print("✅ Conexão com banco estabelecida com sucesso!")


def _seed_initial_data():
    """Popula o catálogo inicial apenas quando as tabelas estão vazias."""
    from extensions import db
    from models import Category, GoalTemplate, ActionPlan, PlanStep, DiagnosticQuestion

    try:
        if Category.query.filter(Category.user_id.is_(None)).count() == 0:
            for name, icon, tipo, children in GLOBAL_CATEGORIES:
                parent = Category(name=name, icon_name=icon, tipo=tipo)
                db.session.add(parent)
                db.session.flush()
                for child in children:
                    db.session.add(Category(
                        name=child,
                        icon_name=icon,
                        tipo=tipo,
                        parent_category_id=parent.id,
                    ))
            print("✅ Categorias globais populadas!")

        if GoalTemplate.query.count() == 0:
            for tpl in GOAL_TEMPLATES:
                template = GoalTemplate(name=tpl["name"], description=tpl["description"])
                for plan_name, steps in tpl["plans"]:
                    plan = ActionPlan(name=plan_name)
                    for order, (title, content) in enumerate(steps, start=1):
                        plan.steps.append(PlanStep(step_order=order, title=title, content=content))
                    template.action_plans.append(plan)
                db.session.add(template)
            print("✅ Modelos de metas populados!")

        if DiagnosticQuestion.query.count() == 0:
            for question_text, target_column, step_order in DIAGNOSTIC_QUESTIONS:
                db.session.add(DiagnosticQuestion(
                    question_text=question_text,
                    target_column=target_column,
                    step_order=step_order,
                ))
            print("✅ Perguntas do diagnóstico populadas!")

        db.session.commit()

    except Exception as e:
        db.session.rollback()
        print(f"⚠️  Erro ao popular dados iniciais: {e}")
        raise


def _mask_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":***@")
    return url


def get_db_stats() -> Dict[str, Any]:
    """
    Retorna estatísticas do banco de dados.
    """
    actual_url = get_database_url()
    actual_db_type = _detect_db_type(actual_url)

    stats = {
        'type': actual_db_type,
        'url': _mask_url(actual_url),
        'tables': [],
        'connections': 0
    }

    try:
        if actual_db_type == 'postgresql':
            import psycopg2
            conn = psycopg2.connect(actual_url)
            cursor = conn.cursor()

            cursor.execute("""
                SELECT schemaname, tablename
                FROM pg_tables
                WHERE schemaname = 'public'
                ORDER BY tablename
            """)
            stats['tables'] = [row[1] for row in cursor.fetchall()]

            cursor.execute("SELECT count(*) FROM pg_stat_activity")
            stats['connections'] = cursor.fetchone()[0]

            cursor.close()
            conn.close()

        else:
            import sqlite3
            db_path = actual_url.replace('sqlite:///', '')
            conn = sqlite3.connect(db_path)
            cursor = conn.cursor()

            cursor.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
            stats['tables'] = [row[0] for row in cursor.fetchall()]

            cursor.close()
            conn.close()

        stats['status'] = 'connected'

    except Exception as e:
        stats['status'] = f'error: {str(e)}'

    return stats
