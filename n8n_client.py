"""Cliente dos webhooks de automação (n8n).

Três fluxos são expostos pelo host de automação:

- ``web-action``: ações genéricas disparadas pelo painel web
- ``whatsapp-inbound``: texto livre de despesa, no formato da Evolution API
- ``start-onboarding``: dados pessoais e respostas do diagnóstico

A interpretação do texto e a categorização acontecem no n8n; aqui só
encaminhamos o payload e devolvemos a resposta JSON.
"""

import logging

import requests
from flask import current_app

logger = logging.getLogger(__name__)


class N8nError(Exception):
    """Falha ao chamar um webhook do n8n."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _webhook_url(path: str) -> str:
    prefix = (current_app.config.get("N8N_WEBHOOK_PREFIX") or "").rstrip("/")
    if not prefix:
        raise N8nError("Automação não configurada. Defina N8N_WEBHOOK_PREFIX.")
    return f"{prefix}/{path}"


def _headers(auth_token: str | None = None) -> dict:
    headers = {"Content-Type": "application/json"}
    if auth_token:
        headers["Authorization"] = f"Bearer {auth_token}"
    return headers


def _parse_body(resp) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {"raw": resp.text}
    return body if isinstance(body, dict) else {"data": body}


def _post(path: str, payload: dict, auth_token: str | None, fallback_message: str) -> dict:
    url = _webhook_url(path)
    timeout = int(current_app.config.get("N8N_TIMEOUT", 15))

    try:
        resp = requests.post(url, json=payload, headers=_headers(auth_token), timeout=timeout)
    except requests.RequestException as e:
        logger.error("[n8n] %s falhou: %s", path, e)
        raise N8nError(fallback_message) from e

    if not (200 <= resp.status_code < 300):
        body = _parse_body(resp)
        message = body.get("message") or fallback_message
        logger.warning("[n8n] %s status=%s body=%s", path, resp.status_code, resp.text[:500])
        raise N8nError(message, status_code=resp.status_code)

    return _parse_body(resp)


def execute_web_action(action_type: str, payload: dict, auth_token: str) -> dict:
    """Dispara uma ação genérica no n8n em nome do usuário autenticado."""
    if not auth_token:
        raise N8nError("Usuário não autenticado.")
    return _post(
        "web-action",
        {"action_type": action_type, "payload": payload or {}},
        auth_token,
        "Ocorreu um erro na execução da ação.",
    )


def build_expense_payload(
    phone_number: str,
    message_text: str,
    user_id: int,
    user_name: str,
    conta: dict | None = None,
    membro_id: int | None = None,
    membro_nome: str | None = None,
) -> dict:
    """Monta o corpo que imita uma mensagem recebida pela Evolution API."""
    digits = "".join(ch for ch in str(phone_number or "") if ch.isdigit())
    return {
        "sender": f"{digits}@s.whatsapp.net",
        "message": {"conversation": message_text},
        "conta_pagadora": {"id": conta["id"], "nome": conta["nome"]} if conta else None,
        "membro_familia": {
            "id": membro_id or user_id,
            "nome": membro_nome or user_name,
        },
    }


def send_expense(payload: dict, auth_token: str | None = None) -> dict:
    return _post("whatsapp-inbound", payload, auth_token, "Erro ao enviar despesa para processamento.")


def send_onboarding(personal_data: dict, diagnostic_answers: dict, auth_token: str | None = None) -> dict:
    return _post(
        "start-onboarding",
        {"personal_data": personal_data, "diagnostic_answers": diagnostic_answers},
        auth_token,
        "Erro ao processar onboarding.",
    )
