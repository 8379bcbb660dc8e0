"""Serviço de envio de emails do Nexus Financeiro"""

import logging
import os
from email.utils import parseaddr

import requests
from dotenv import load_dotenv
from flask import Flask, render_template_string
from flask_mail import Mail, Message

load_dotenv()

mail = Mail()
logger = logging.getLogger(__name__)

BREVO_URL = "https://api.brevo.com/v3/smtp/email"

INVITE_TEMPLATE = """
<html>
    <head>
        <style>
            body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
            .container { max-width: 600px; margin: 0 auto; padding: 20px; }
            .header { background: linear-gradient(135deg, #6366f1, #4338ca); color: white; padding: 20px; border-radius: 8px; }
            .content { background: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0; }
            .button { display: inline-block; background: #6366f1; color: white; padding: 12px 24px; border-radius: 6px; text-decoration: none; margin: 10px 0; }
            .footer { text-align: center; color: #999; font-size: 12px; margin-top: 20px; }
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>👨‍👩‍👧 Convite para a família {{ family_name }}</h1>
            </div>
            <div class="content">
                <p>Olá,</p>
                <p><strong>{{ inviter_name }}</strong> convidou você para fazer parte da família
                <strong>{{ family_name }}</strong> no Nexus Financeiro.</p>
                <p><strong>Papel:</strong> {{ papel }}</p>
                {% if cota_mensal %}<p><strong>Cota mensal:</strong> R$ {{ "%.2f"|format(cota_mensal) }}</p>{% endif %}
                <p>Clique no botão abaixo para aceitar o convite:</p>
                <a href="{{ accept_url }}" class="button">Aceitar Convite</a>
                <p>Ou copie e cole este link no seu navegador:</p>
                <p><small>{{ accept_url }}</small></p>
                <p><small>O convite expira em {{ ttl_days }} dias.</small></p>
            </div>
            <div class="footer">
                <p>Este é um email automático. Por favor, não responda.</p>
                <p>Nexus Financeiro</p>
            </div>
        </div>
    </body>
</html>
"""


def _env_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    return v in ("1", "true", "t", "yes", "y", "on")


def init_mail(app: Flask):
    """Inicializa Flask-Mail (SMTP) e as credenciais do Brevo"""
    app.config.setdefault('MAIL_SERVER', os.getenv('MAIL_SERVER', 'smtp-relay.brevo.com'))
    app.config.setdefault('MAIL_PORT', int(os.getenv('MAIL_PORT', 587)))
    app.config.setdefault('MAIL_USE_TLS', _env_bool(os.getenv('MAIL_USE_TLS', 'true'), default=True))
    app.config.setdefault('MAIL_USE_SSL', _env_bool(os.getenv('MAIL_USE_SSL', 'false'), default=False))

    raw_sender = os.getenv('MAIL_DEFAULT_SENDER')
    if raw_sender:
        _, parsed_email = parseaddr(raw_sender)
        app.config.setdefault('MAIL_DEFAULT_SENDER', parsed_email or raw_sender)
    else:
        app.config.setdefault('MAIL_DEFAULT_SENDER', None)
    app.config.setdefault('MAIL_USERNAME', os.getenv('MAIL_USERNAME') or raw_sender)
    app.config.setdefault('MAIL_PASSWORD', os.getenv('MAIL_PASSWORD') or os.getenv('MAIL_DEFAULT_SENDER_SENHA'))
    app.config.setdefault('MAIL_TIMEOUT', int(os.getenv('MAIL_TIMEOUT', 30)))

    app.config.setdefault('BREVO_API_KEY', os.getenv('BREVO_API_KEY'))
    app.config.setdefault('BREVO_SENDER_NAME', os.getenv('BREVO_SENDER_NAME', 'Nexus Financeiro'))
    app.config.setdefault('BREVO_SENDER_EMAIL', os.getenv('BREVO_SENDER_EMAIL'))

    mail.init_app(app)


def _brevo_enabled(app: Flask) -> bool:
    return bool(app.config.get('BREVO_API_KEY'))


def _send_brevo_email(app: Flask, subject: str, recipients: list[str], html: str) -> bool:
    sender_email = app.config.get('BREVO_SENDER_EMAIL') or app.config.get('MAIL_DEFAULT_SENDER')
    if not sender_email:
        logger.error("[BREVO] Remetente ausente. Defina BREVO_SENDER_EMAIL (ou MAIL_DEFAULT_SENDER).")
        return False

    payload = {
        "sender": {"email": sender_email},
        "to": [{"email": r} for r in recipients],
        "subject": subject,
        "htmlContent": html,
    }
    if app.config.get('BREVO_SENDER_NAME'):
        payload["sender"]["name"] = app.config['BREVO_SENDER_NAME']

    headers = {
        "accept": "application/json",
        "api-key": app.config['BREVO_API_KEY'],
        "content-type": "application/json",
    }

    try:
        resp = requests.post(
            BREVO_URL,
            headers=headers,
            json=payload,
            timeout=int(app.config.get('MAIL_TIMEOUT', 30)),
        )
    except requests.RequestException as e:
        logger.error(f"❌ [BREVO] Erro ao enviar email: {e}")
        return False

    if 200 <= resp.status_code < 300:
        logger.info(f"✅ [BREVO] Email enviado para {recipients}")
        return True

    logger.error(f"❌ [BREVO] Falha ao enviar email (status={resp.status_code}): {resp.text}")
    return False


def _send_smtp_email(app: Flask, subject: str, recipients: list[str], html: str) -> bool:
    if not app.config.get('MAIL_USERNAME') or not app.config.get('MAIL_PASSWORD') or not app.config.get('MAIL_DEFAULT_SENDER'):
        logger.error("❌ [SMTP] Credenciais SMTP ausentes (MAIL_DEFAULT_SENDER / MAIL_DEFAULT_SENDER_SENHA).")
        return False

    try:
        mail.send(Message(subject=subject, recipients=recipients, html=html))
    except Exception as e:
        logger.error(f"❌ [SMTP] Falha ao enviar para {recipients}: {e}")
        return False

    logger.info(f"✅ [SMTP] Email enviado para {recipients}")
    return True


def send_family_invitation(
    app: Flask,
    recipient_email: str,
    inviter_name: str,
    family_name: str,
    papel: str,
    accept_url: str,
    cota_mensal: float | None = None,
) -> bool:
    """
    Envia o convite de família por email.

    Tenta o Brevo primeiro; sem chave do Brevo cai para SMTP (Flask-Mail).
    Nunca propaga exceção para a requisição: devolve True/False.
    """
    with app.app_context():
        html_body = render_template_string(
            INVITE_TEMPLATE,
            inviter_name=inviter_name,
            family_name=family_name,
            papel=papel,
            cota_mensal=cota_mensal,
            accept_url=accept_url,
            ttl_days=app.config.get('INVITE_TTL_DAYS', 7),
        )
        subject = f'Convite para a família {family_name} - Nexus Financeiro'

        if _brevo_enabled(app):
            return _send_brevo_email(app, subject, [recipient_email], html_body)

        return _send_smtp_email(app, subject, [recipient_email], html_body)
