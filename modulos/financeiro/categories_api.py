"""
API de categorias (globais + do usuário) e mapeamentos de palavras-chave.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from extensions import db
from models import Category, Transaction, Orcamento, UserKeywordMapping
from modulos.billing.plans import can_use_feature, plan_for_user
from modulos.financeiro.common import iso, json_body, json_error, require_user

logger = logging.getLogger(__name__)

categories_api_bp = Blueprint("categories_api", __name__)

TIPOS_CATEGORIA = ("despesa", "receita")


def visible_categories_query(user_id: int):
    return Category.query.filter(or_(Category.user_id.is_(None), Category.user_id == user_id))


def get_visible_category(user_id: int, category_id) -> Category | None:
    if category_id in (None, ""):
        return None
    try:
        category_id = int(category_id)
    except (TypeError, ValueError):
        return None
    return visible_categories_query(user_id).filter(Category.id == category_id).first()


def serialize_category(cat: Category) -> dict:
    return {
        "id": cat.id,
        "name": cat.name,
        "description": cat.description,
        "icon_name": cat.icon_name,
        "tipo": cat.tipo,
        "parent_category_id": cat.parent_category_id,
        "user_id": cat.user_id,
        "is_global": cat.user_id is None,
    }


def build_category_tree(categories: list[Category]) -> list[dict]:
    nodes = {c.id: {**serialize_category(c), "children": []} for c in categories}
    roots = []
    for c in categories:
        node = nodes[c.id]
        if c.parent_category_id and c.parent_category_id in nodes:
            nodes[c.parent_category_id]["children"].append(node)
        else:
            roots.append(node)
    return roots


@categories_api_bp.route("/api/categories", methods=["GET"])
def api_list_categories():
    user, err = require_user()
    if err:
        return err

    query = visible_categories_query(user.id)
    tipo = (request.args.get("tipo") or "").strip().lower()
    if tipo in TIPOS_CATEGORIA:
        query = query.filter(Category.tipo == tipo)
    if request.args.get("parents") in ("1", "true"):
        query = query.filter(Category.parent_category_id.is_(None))

    categories = query.order_by(Category.name.asc()).all()

    if request.args.get("tree") in ("1", "true"):
        return jsonify({"success": True, "categories": build_category_tree(categories)}), 200
    return jsonify({"success": True, "categories": [serialize_category(c) for c in categories]}), 200


def _apply_category_fields(user_id: int, data: dict, cat: Category) -> str | None:
    if "name" in data or cat.id is None:
        name = str(data.get("name") or "").strip()
        if not name:
            return "Informe o nome da categoria"
        cat.name = name[:100]

    if "tipo" in data:
        tipo = str(data.get("tipo") or "").strip().lower()
        if tipo not in TIPOS_CATEGORIA:
            return "Tipo de categoria inválido"
        cat.tipo = tipo

    if "description" in data:
        cat.description = str(data.get("description") or "").strip() or None
    if "icon_name" in data:
        cat.icon_name = str(data.get("icon_name") or "").strip() or None

    if "parent_category_id" in data:
        raw = data.get("parent_category_id")
        if raw in (None, ""):
            cat.parent_category_id = None
        else:
            parent = get_visible_category(user_id, raw)
            if not parent:
                return "Categoria pai não encontrada"
            if cat.id is not None and parent.id == cat.id:
                return "Uma categoria não pode ser pai de si mesma"
            if parent.parent_category_id is not None:
                return "Use uma categoria principal como pai"
            cat.parent_category_id = parent.id
    return None


@categories_api_bp.route("/api/categories", methods=["POST"])
def api_create_category():
    user, err = require_user()
    if err:
        return err

    plan = plan_for_user(user.id)
    if not can_use_feature(plan, "customCategories"):
        return json_error("Categorias personalizadas estão disponíveis nos planos Plus e Premium", 403,
                          feature="customCategories", plan_type=plan)

    data = json_body()
    cat = Category(user_id=user.id, tipo="despesa")
    error = _apply_category_fields(user.id, data, cat)
    if error:
        return json_error(error, 400)

    duplicate = visible_categories_query(user.id).filter(
        func.lower(Category.name) == cat.name.lower(),
        Category.tipo == cat.tipo,
    ).first()
    if duplicate:
        return json_error("Já existe uma categoria com este nome", 409)

    try:
        db.session.add(cat)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[CATEGORIES] erro ao criar: %s", e)
        return json_error("Erro ao criar categoria", 500)

    return jsonify({"success": True, "category": serialize_category(cat)}), 201


@categories_api_bp.route("/api/categories/<int:category_id>", methods=["PUT"])
def api_update_category(category_id: int):
    user, err = require_user()
    if err:
        return err

    cat = db.session.get(Category, category_id)
    if not cat or (cat.user_id is not None and cat.user_id != user.id):
        return json_error("Categoria não encontrada", 404)
    if cat.user_id is None:
        return json_error("Categorias globais não podem ser alteradas", 403)

    error = _apply_category_fields(user.id, json_body(), cat)
    if error:
        db.session.rollback()
        return json_error(error, 400)

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[CATEGORIES] erro ao atualizar %s: %s", category_id, e)
        return json_error("Erro ao atualizar categoria", 500)

    return jsonify({"success": True, "category": serialize_category(cat)}), 200


@categories_api_bp.route("/api/categories/<int:category_id>", methods=["DELETE"])
def api_delete_category(category_id: int):
    user, err = require_user()
    if err:
        return err

    cat = db.session.get(Category, category_id)
    if not cat or (cat.user_id is not None and cat.user_id != user.id):
        return json_error("Categoria não encontrada", 404)
    if cat.user_id is None:
        return json_error("Categorias globais não podem ser excluídas", 403)

    in_use = (
        db.session.query(Transaction.id).filter_by(category_id=cat.id).first() is not None
        or db.session.query(Orcamento.id).filter_by(category_id=cat.id).first() is not None
        or db.session.query(Category.id).filter_by(parent_category_id=cat.id).first() is not None
    )
    if in_use:
        return json_error("Categoria em uso por transações, orçamentos ou subcategorias", 409)

    try:
        UserKeywordMapping.query.filter_by(category_id=cat.id).delete()
        db.session.delete(cat)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[CATEGORIES] erro ao excluir %s: %s", category_id, e)
        return json_error("Erro ao excluir categoria", 500)

    return jsonify({"success": True, "message": "Categoria excluída"}), 200


# ---------------------------------------------------------------------------
# Palavras-chave usadas pela automação na categorização
# ---------------------------------------------------------------------------

def _serialize_mapping(mapping: UserKeywordMapping) -> dict:
    return {
        "id": mapping.id,
        "keyword": mapping.keyword,
        "category_id": mapping.category_id,
        "category_name": mapping.category.name if mapping.category else None,
        "created_at": iso(mapping.created_at),
    }


@categories_api_bp.route("/api/keyword-mappings", methods=["GET"])
def api_list_keyword_mappings():
    user, err = require_user()
    if err:
        return err

    mappings = (
        UserKeywordMapping.query
        .filter_by(user_id=user.id)
        .order_by(UserKeywordMapping.keyword.asc())
        .all()
    )
    return jsonify({"success": True, "mappings": [_serialize_mapping(m) for m in mappings]}), 200


@categories_api_bp.route("/api/keyword-mappings", methods=["POST"])
def api_create_keyword_mapping():
    user, err = require_user()
    if err:
        return err

    data = json_body()
    keyword = str(data.get("keyword") or "").strip().lower()
    if not keyword:
        return json_error("Informe a palavra-chave", 400)

    category = get_visible_category(user.id, data.get("category_id"))
    if not category:
        return json_error("Categoria não encontrada", 404)

    mapping = UserKeywordMapping.query.filter_by(user_id=user.id, keyword=keyword).first()
    status = 200
    if mapping is None:
        mapping = UserKeywordMapping(user_id=user.id, keyword=keyword[:100])
        db.session.add(mapping)
        status = 201
    mapping.category_id = category.id

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[KEYWORDS] erro ao salvar: %s", e)
        return json_error("Erro ao salvar palavra-chave", 500)

    return jsonify({"success": True, "mapping": _serialize_mapping(mapping)}), status


@categories_api_bp.route("/api/keyword-mappings/<int:mapping_id>", methods=["DELETE"])
def api_delete_keyword_mapping(mapping_id: int):
    user, err = require_user()
    if err:
        return err

    mapping = UserKeywordMapping.query.filter_by(id=mapping_id, user_id=user.id).first()
    if not mapping:
        return json_error("Palavra-chave não encontrada", 404)

    db.session.delete(mapping)
    db.session.commit()
    return jsonify({"success": True, "message": "Palavra-chave removida"}), 200
