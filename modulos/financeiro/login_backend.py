import logging
import secrets
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func
from werkzeug.security import check_password_hash

from extensions import db
from models import User

logger = logging.getLogger(__name__)


def issue_api_token(user: User) -> str:
    """Gera (ou renova) o token usado em Authorization: Bearer."""
    hours = int(current_app.config.get("TOKEN_MAX_AGE_HOURS", 24 * 7))
    user.api_token = secrets.token_urlsafe(32)
    user.api_token_expires_at = datetime.utcnow() + timedelta(hours=hours)
    return user.api_token


def process_login(email: str | None, password: str | None, remote_addr: str | None = None) -> dict:
    email = (email or "").strip().lower()
    password = password or ""

    if not email or not password:
        return {
            "success": False,
            "status": 400,
            "message": "Informe e-mail e senha.",
            "user": None,
        }

    user = User.query.filter(func.lower(User.email) == email).first()

    if not user or not check_password_hash(user.password_hash, password):
        logger.info("Login recusado para %s (ip=%s)", email, remote_addr)
        return {
            "success": False,
            "status": 401,
            "message": "E-mail ou senha inválidos.",
            "user": None,
        }

    token = issue_api_token(user)
    db.session.commit()

    logger.info("Login bem-sucedido user_id=%s (ip=%s)", user.id, remote_addr)
    return {
        "success": True,
        "status": 200,
        "message": "Login realizado com sucesso",
        "user": user,
        "access_token": token,
    }
