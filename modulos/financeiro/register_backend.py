import re
import secrets

from sqlalchemy import func
from werkzeug.security import generate_password_hash

from extensions import db
from models import User
from modulos.billing.plans import ensure_subscription

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def process_registration(data: dict) -> dict:
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    confirm = str(data.get("confirm") or data.get("confirm_password") or "")
    full_name = str(data.get("full_name") or "").strip() or None
    phone_number = str(data.get("phone_number") or "").strip() or None

    if not email or not password:
        return {
            "success": False,
            "status": 400,
            "message": "Preencha todos os campos.",
        }

    if not EMAIL_RE.match(email):
        return {
            "success": False,
            "status": 400,
            "message": "E-mail inválido.",
        }

    if password != confirm:
        return {
            "success": False,
            "status": 400,
            "message": "As senhas não coincidem.",
        }

    if len(password) < 6:
        return {
            "success": False,
            "status": 400,
            "message": "Use uma senha com pelo menos 6 caracteres.",
        }

    exists = User.query.filter(func.lower(User.email) == email).first()
    if exists:
        return {
            "success": False,
            "status": 409,
            "message": "Este e-mail já está cadastrado.",
        }

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        auth_id=secrets.token_hex(16),
        full_name=full_name,
        phone_number=phone_number,
    )
    db.session.add(user)
    db.session.flush()
    ensure_subscription(user.id)
    db.session.commit()

    return {
        "success": True,
        "status": 201,
        "message": "Conta criada! Faça login para continuar.",
        "user": user,
    }
