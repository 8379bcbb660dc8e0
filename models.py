from datetime import datetime

from extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    auth_id = db.Column(db.String(64), unique=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    phone_number = db.Column(db.String(32))

    # Diagnóstico financeiro
    financial_archetype = db.Column(db.String(100))
    renda_base_amount = db.Column(db.Numeric(15, 2))
    income_input_typical = db.Column(db.Numeric(15, 2))
    income_input_best = db.Column(db.Numeric(15, 2))
    income_input_worst = db.Column(db.Numeric(15, 2))
    cost_of_living_reported = db.Column(db.Numeric(15, 2))

    # Preferências
    confirmar_registros = db.Column(db.Boolean, default=True, nullable=False)
    view_mode = db.Column(db.String(20), default="individual", nullable=False)  # individual ou family
    theme = db.Column(db.String(10), default="light", nullable=False)  # light ou dark
    onboarding_completed = db.Column(db.Boolean, default=False, nullable=False)

    # Token de API (Authorization: Bearer)
    api_token = db.Column(db.String(100), unique=True)
    api_token_expires_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    transactions = db.relationship("Transaction", backref="user", lazy="dynamic", cascade="all, delete-orphan")
    contas = db.relationship("ContaPagadora", backref="user", lazy="dynamic", cascade="all, delete-orphan")
    goals = db.relationship("UserGoal", backref="user", lazy="dynamic", cascade="all, delete-orphan")
    subscription = db.relationship("Subscription", backref="user", uselist=False, cascade="all, delete-orphan")

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User {self.email}>"


class Category(db.Model):
    """Categorias globais (user_id nulo) ou do usuário"""
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(255))
    icon_name = db.Column(db.String(50))
    tipo = db.Column(db.String(20), default="despesa", nullable=False)  # despesa ou receita
    parent_category_id = db.Column(db.Integer, db.ForeignKey("categories.id"))
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    parent = db.relationship("Category", remote_side=[id], backref="children")

    def __repr__(self) -> str:
        return f"<Category {self.name}>"


class UserKeywordMapping(db.Model):
    """Palavras-chave que a automação usa para categorizar despesas"""
    __tablename__ = "user_keyword_mappings"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    keyword = db.Column(db.String(100), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    category = db.relationship("Category")

    __table_args__ = (
        db.UniqueConstraint("user_id", "keyword", name="uq_keyword_user"),
    )


class ContaPagadora(db.Model):
    """Contas pagadoras: corrente, poupança, cartão de crédito, dinheiro"""
    __tablename__ = "contas_pagadoras"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    nome = db.Column(db.String(100), nullable=False)
    tipo = db.Column(db.String(30), nullable=False)
    saldo_inicial = db.Column(db.Numeric(15, 2), default=0)
    cor = db.Column(db.String(7), default="#6366F1")
    icone = db.Column(db.String(50))
    dia_fechamento_fatura = db.Column(db.Integer)  # 1-31, apenas cartão de crédito
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ContaPagadora {self.nome}>"


class Transaction(db.Model):
    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"))
    conta_pagadora_id = db.Column(db.Integer, db.ForeignKey("contas_pagadoras.id"))
    description = db.Column(db.String(255))
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    transaction_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    category = db.relationship("Category")
    conta_pagadora = db.relationship("ContaPagadora")

    __table_args__ = (
        db.Index("idx_transactions_user_date", "user_id", "transaction_date"),
        db.Index("idx_transactions_user_category", "user_id", "category_id"),
        db.Index("idx_transactions_conta_date", "conta_pagadora_id", "transaction_date"),
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.amount}>"


class Orcamento(db.Model):
    """Orçamento mensal por categoria (mes_ano = primeiro dia do mês)"""
    __tablename__ = "orcamentos"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    familia_id = db.Column(db.Integer, db.ForeignKey("familias.id"))
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False)
    valor_orcado = db.Column(db.Numeric(15, 2), nullable=False)
    mes_ano = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    category = db.relationship("Category")

    __table_args__ = (
        db.Index("idx_orcamentos_user_mes", "user_id", "mes_ano"),
        db.Index("idx_orcamentos_familia_mes", "familia_id", "mes_ano"),
    )


class GoalTemplate(db.Model):
    __tablename__ = "goal_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)

    action_plans = db.relationship("ActionPlan", backref="goal_template", cascade="all, delete-orphan")


class ActionPlan(db.Model):
    __tablename__ = "action_plans"

    id = db.Column(db.Integer, primary_key=True)
    goal_template_id = db.Column(db.Integer, db.ForeignKey("goal_templates.id"))
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)

    steps = db.relationship("PlanStep", backref="plan", order_by="PlanStep.step_order", cascade="all, delete-orphan")


class PlanStep(db.Model):
    __tablename__ = "plan_steps"

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("action_plans.id"), nullable=False)
    step_order = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text)


class UserGoal(db.Model):
    __tablename__ = "user_goals"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    goal_template_id = db.Column(db.Integer, db.ForeignKey("goal_templates.id"))
    custom_name = db.Column(db.String(150))
    target_amount = db.Column(db.Numeric(15, 2))
    current_amount = db.Column(db.Numeric(15, 2), default=0)
    target_date = db.Column(db.Date)
    is_primary = db.Column(db.Boolean, default=False, nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)  # active, completed, archived
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    template = db.relationship("GoalTemplate")


class UserActionPlan(db.Model):
    __tablename__ = "user_action_plans"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey("action_plans.id"), nullable=False)
    user_goal_id = db.Column(db.Integer, db.ForeignKey("user_goals.id"))
    status = db.Column(db.String(20), default="in_progress", nullable=False)  # in_progress, completed
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    plan = db.relationship("ActionPlan")
    progress = db.relationship("UserPlanStepProgress", backref="user_action_plan", cascade="all, delete-orphan")


class UserPlanStepProgress(db.Model):
    __tablename__ = "user_plan_step_progress"

    id = db.Column(db.Integer, primary_key=True)
    user_action_plan_id = db.Column(db.Integer, db.ForeignKey("user_action_plans.id"), nullable=False)
    plan_step_id = db.Column(db.Integer, db.ForeignKey("plan_steps.id"), nullable=False)
    completed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("user_action_plan_id", "plan_step_id", name="uq_plan_step_progress"),
    )


# ============================================================================
# FAMÍLIA
# ============================================================================

class Familia(db.Model):
    __tablename__ = "familias"

    id = db.Column(db.Integer, primary_key=True)
    nome_familia = db.Column(db.String(150), nullable=False)
    responsavel_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    responsavel = db.relationship("User", foreign_keys=[responsavel_user_id])
    membros = db.relationship("MembroFamilia", backref="familia", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Familia {self.nome_familia}>"


class MembroFamilia(db.Model):
    __tablename__ = "membros_familia"

    id = db.Column(db.Integer, primary_key=True)
    familia_id = db.Column(db.Integer, db.ForeignKey("familias.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    papel = db.Column(db.String(50), default="Membro", nullable=False)
    cota_mensal = db.Column(db.Numeric(15, 2), default=0)
    joined_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User", backref=db.backref("membro_familia", uselist=False))

    def __repr__(self) -> str:
        return f"<MembroFamilia {self.familia_id}:{self.user_id}>"


class FamilyInvite(db.Model):
    __tablename__ = "family_invites"

    id = db.Column(db.Integer, primary_key=True)
    familia_id = db.Column(db.Integer, db.ForeignKey("familias.id"), nullable=False)
    invited_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    invited_email = db.Column(db.String(255))
    papel = db.Column(db.String(50), default="Membro", nullable=False)
    cota_mensal = db.Column(db.Numeric(15, 2))
    token = db.Column(db.String(100), unique=True, nullable=False)
    status = db.Column(db.String(20), default="pending", nullable=False)  # pending, accepted, canceled
    expires_at = db.Column(db.DateTime, nullable=False)
    accepted_at = db.Column(db.DateTime)
    accepted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    familia = db.relationship("Familia", backref=db.backref("invites", cascade="all, delete-orphan"))
    invited_by = db.relationship("User", foreign_keys=[invited_by_user_id])

    def __repr__(self) -> str:
        return f"<FamilyInvite {self.familia_id} {self.status}>"


# ============================================================================
# DIAGNÓSTICO, RESUMOS E ASSINATURAS
# ============================================================================

class DiagnosticQuestion(db.Model):
    __tablename__ = "diagnostic_questions"

    id = db.Column(db.Integer, primary_key=True)
    question_text = db.Column(db.String(255), nullable=False)
    target_column = db.Column(db.String(50), nullable=False)
    step_order = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


class MonthlySummary(db.Model):
    """Snapshot mensal por usuário, atualizado pelo agendador"""
    __tablename__ = "monthly_summaries"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    month = db.Column(db.Date, primary_key=True)
    total_income = db.Column(db.Numeric(15, 2), default=0)
    total_spent = db.Column(db.Numeric(15, 2), default=0)
    balance = db.Column(db.Numeric(15, 2), default=0)
    renda_base_amount = db.Column(db.Numeric(15, 2))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    stripe_customer_id = db.Column(db.String(100))
    stripe_subscription_id = db.Column(db.String(100), unique=True)
    stripe_price_id = db.Column(db.String(100))
    plan_type = db.Column(db.String(20), default="free", nullable=False)  # free, plus, premium
    status = db.Column(db.String(20), default="active", nullable=False)  # active, canceled, past_due, trialing, incomplete
    current_period_start = db.Column(db.DateTime)
    current_period_end = db.Column(db.DateTime)
    cancel_at_period_end = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Subscription {self.user_id} {self.plan_type}/{self.status}>"
