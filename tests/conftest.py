"""
Fixtures compartilhadas pelos testes.

Cada teste recebe uma aplicação nova com SQLite em memória e o catálogo
inicial (categorias globais, modelos de metas, perguntas) já populado.
Nenhum teste fala com n8n, Brevo ou Stripe de verdade: as chamadas HTTP
e o SDK são substituídos via monkeypatch.
"""

import secrets
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from application import create_app
from config import TestingConfig
from extensions import db, init_database
from models import Category, ContaPagadora, Transaction, User
from modulos.billing.plans import ensure_subscription
from modulos.financeiro.login_backend import issue_api_token

DEFAULT_PASSWORD = "segredo123"


class FakeResponse:
    """Resposta mínima no formato de requests.Response."""

    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ("" if payload is None else str(payload))

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


@pytest.fixture
def fake_post(monkeypatch):
    """Substitui requests.post e guarda as chamadas feitas."""
    calls = []
    state = {"response": FakeResponse(200, {"ok": True})}

    def _post(url, json=None, headers=None, timeout=None, **kwargs):
        calls.append({"url": url, "json": json, "headers": headers or {}, "timeout": timeout})
        response = state["response"]
        if isinstance(response, Exception):
            raise response
        return response

    def respond_with(status_code=200, payload=None, exc=None):
        state["response"] = exc if exc is not None else FakeResponse(status_code, payload)

    monkeypatch.setattr("requests.post", _post)
    _post.calls = calls
    _post.respond_with = respond_with
    return _post


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        init_database()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(email="ana@example.com", password=DEFAULT_PASSWORD, plan="free", **fields):
        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            auth_id=secrets.token_hex(16),
            **fields,
        )
        db.session.add(user)
        db.session.flush()
        sub = ensure_subscription(user.id)
        sub.plan_type = plan
        sub.status = "active"
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user):
        token = issue_api_token(user)
        db.session.commit()
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def category(app):
    def _category(name, user_id=None):
        query = Category.query.filter_by(name=name)
        if user_id is None:
            query = query.filter(Category.user_id.is_(None))
        else:
            query = query.filter_by(user_id=user_id)
        return query.one()

    return _category


@pytest.fixture
def add_account(app):
    def _add_account(user, nome="Nubank", tipo="Conta Corrente", saldo_inicial=0, **fields):
        conta = ContaPagadora(user_id=user.id, nome=nome, tipo=tipo, saldo_inicial=saldo_inicial, **fields)
        db.session.add(conta)
        db.session.commit()
        return conta

    return _add_account


@pytest.fixture
def add_transaction(app):
    def _add_transaction(user, amount, when=None, category=None, conta=None, description=None):
        tx = Transaction(
            user_id=user.id,
            amount=amount,
            transaction_date=when or date.today(),
            category_id=category.id if category else None,
            conta_pagadora_id=conta.id if conta else None,
            description=description,
        )
        db.session.add(tx)
        db.session.commit()
        return tx

    return _add_transaction
