"""Assinaturas: planos, limites por plano e integração com o Stripe."""

from .routes import billing_bp

__all__ = ["billing_bp"]
