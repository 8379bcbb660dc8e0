from datetime import datetime

from flask import Blueprint, jsonify, request
from sqlalchemy import text

from extensions import db
from modulos.billing import billing_bp
from modulos.financeiro import FINANCEIRO_BLUEPRINTS

main_bp = Blueprint("main", __name__)


@main_bp.route("/api/health", methods=["GET"])
def health():
    """Health check com teste de conexão ao banco."""
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        database = f"erro: {e}"
    return jsonify({
        "success": True,
        "status": "OK",
        "database": database,
        "timestamp": datetime.utcnow().isoformat(),
    }), 200


def _api_error(message: str, status: int):
    return jsonify({"success": False, "message": message, "path": request.path}), status


def register_error_handlers(app):
    """Respostas JSON para erros nas rotas /api/; as demais seguem o padrão do Flask."""

    @app.errorhandler(404)
    def api_404(error):
        if request.path.startswith("/api/"):
            return _api_error("Endpoint não encontrado", 404)
        return error

    @app.errorhandler(405)
    def api_405(error):
        if request.path.startswith("/api/"):
            return _api_error("Método não permitido", 405)
        return error

    @app.errorhandler(500)
    def api_500(error):
        db.session.rollback()
        if request.path.startswith("/api/"):
            return _api_error("Erro interno no servidor", 500)
        return error


def register_blueprints(app):
    """Registra todos os blueprints da aplicação."""
    app.register_blueprint(main_bp)

    for bp in FINANCEIRO_BLUEPRINTS:
        app.register_blueprint(bp)

    app.register_blueprint(billing_bp)
