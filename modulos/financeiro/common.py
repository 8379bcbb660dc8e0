"""
Helpers compartilhados pelos endpoints financeiros: autenticação da
requisição, datas de competência, conversão de valores e família.
"""

import calendar
from datetime import datetime, date
from decimal import Decimal, InvalidOperation

from flask import jsonify, request, session

from extensions import db
from models import User, MembroFamilia, Familia

VIEW_MODES = ("individual", "family")
THEMES = ("light", "dark")


def json_error(message: str, status: int, **extra):
    payload = {"success": False, "message": message}
    payload.update(extra)
    return jsonify(payload), status


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Autenticação
# ---------------------------------------------------------------------------

def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        return token or None
    return None


def get_user_id_from_request() -> int | None:
    """Sessão do Flask primeiro; depois Authorization: Bearer <token>."""
    session_user_id = session.get("finance_user_id")
    if session_user_id is not None:
        try:
            return int(session_user_id)
        except (TypeError, ValueError):
            return None

    token = _bearer_token()
    if not token:
        return None

    user = User.query.filter_by(api_token=token).first()
    if not user:
        return None
    if user.api_token_expires_at and user.api_token_expires_at < datetime.utcnow():
        return None
    return user.id


def require_user():
    """Retorna (user, None) ou (None, resposta 401)."""
    user_id = get_user_id_from_request()
    if not user_id:
        return None, json_error("Não autenticado", 401)

    user = db.session.get(User, user_id)
    if not user:
        session.pop("finance_user_id", None)
        return None, json_error("Não autenticado", 401)
    return user, None


def current_token(user: User) -> str | None:
    """Token de API do usuário, usado para autenticar chamadas ao n8n."""
    return _bearer_token() or user.api_token


# ---------------------------------------------------------------------------
# Datas de competência
# ---------------------------------------------------------------------------

def shift_month(y: int, m: int, delta: int) -> tuple[int, int]:
    total = (int(y) * 12) + (int(m) - 1) + int(delta)
    return total // 12, (total % 12) + 1


def last_day_of_month(y: int, m: int) -> date:
    return date(int(y), int(m), calendar.monthrange(int(y), int(m))[1])


def month_bounds(y: int, m: int) -> tuple[date, date]:
    """Intervalo [início, início do mês seguinte)."""
    ny, nm = shift_month(y, m, 1)
    return date(y, m, 1), date(ny, nm, 1)


def parse_month(value: str | None, today: date | None = None) -> tuple[int, int]:
    """Aceita 'YYYY-MM' ou 'YYYY-MM-DD'; sem valor usa o mês corrente."""
    today = today or datetime.utcnow().date()
    if not value:
        return today.year, today.month

    parts = str(value).strip().split("-")
    try:
        y, m = int(parts[0]), int(parts[1])
    except (IndexError, ValueError):
        raise ValueError("Mês inválido. Use o formato AAAA-MM.")
    if not (1 <= m <= 12) or y < 1900:
        raise ValueError("Mês inválido. Use o formato AAAA-MM.")
    return y, m


def month_from_request(today: date | None = None) -> tuple[int, int]:
    return parse_month(request.args.get("month"), today)


def parse_date(value, field: str = "data") -> date:
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValueError(f"{field} inválida. Use o formato AAAA-MM-DD.")


def int_arg(name: str, default: int, minimum: int = 1, maximum: int = 1000) -> int:
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default
    return max(minimum, min(maximum, value))


# ---------------------------------------------------------------------------
# Valores
# ---------------------------------------------------------------------------

def to_float(value) -> float:
    if value is None:
        return 0.0
    return float(value)


def parse_amount(value, field: str = "valor", allow_zero: bool = False) -> Decimal:
    try:
        amount = Decimal(str(value).replace(",", ".")).quantize(Decimal("0.01"))
        if not amount.is_finite():
            raise ValueError(f"{field} inválido.")
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"{field} inválido.")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValueError(f"{field} deve ser maior que zero.")
    return amount


def iso(value) -> str | None:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Família
# ---------------------------------------------------------------------------

def get_membership(user_id: int) -> MembroFamilia | None:
    return MembroFamilia.query.filter_by(user_id=user_id).first()


def get_family(user_id: int) -> Familia | None:
    membership = get_membership(user_id)
    return membership.familia if membership else None


def family_user_ids(familia_id: int) -> list[int]:
    rows = db.session.query(MembroFamilia.user_id).filter_by(familia_id=familia_id).all()
    return [int(r[0]) for r in rows]


def is_responsavel(user_id: int, familia: Familia | None) -> bool:
    return bool(familia) and int(familia.responsavel_user_id) == int(user_id)


def effective_view_mode(user: User) -> str:
    """Modo persistido; volta para 'individual' quando o usuário perdeu a família."""
    mode = user.view_mode if user.view_mode in VIEW_MODES else "individual"
    if mode == "family" and not get_membership(user.id):
        user.view_mode = "individual"
        db.session.commit()
        return "individual"
    return mode
