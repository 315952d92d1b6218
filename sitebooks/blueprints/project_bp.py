"""
Project budget & financials blueprint.

Endpoints:
    GET  /api/v1/projects/<pid>/budgets              — budget lines
    POST /api/v1/projects/<pid>/budgets              — add a budget line
    GET  /api/v1/projects/<pid>/budgets/summary      — totals and status counts
    PUT  /api/v1/projects/<pid>/budgets/<budget_id>  — revise quantity / unit price
    GET  /api/v1/projects/<pid>/financials           — dashboard aggregate
"""

from flask import Blueprint, jsonify

from sitebooks.blueprints import current_user, json_body
from sitebooks.core.exceptions import NotFoundError
from sitebooks.services import cost_code_service, project_financials_service

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")


@project_bp.route("/<project_id>/budgets", methods=["GET"])
def list_budgets(project_id):
    budgets = cost_code_service.get_project_budgets(project_id)
    return jsonify({"budgets": [b.to_dict() for b in budgets], "total": len(budgets)})


@project_bp.route("/<project_id>/budgets", methods=["POST"])
def create_budget(project_id):
    budget = cost_code_service.create_budget(project_id, json_body(), current_user())
    return jsonify(budget.to_dict()), 201


@project_bp.route("/<project_id>/budgets/summary", methods=["GET"])
def budget_summary(project_id):
    return jsonify(cost_code_service.get_project_budget_summary(project_id))


@project_bp.route("/<project_id>/budgets/<budget_id>", methods=["PUT"])
def update_budget(project_id, budget_id):
    if cost_code_service.get_budget(budget_id).project_id != project_id:
        raise NotFoundError(resource="CostCodeBudget", resource_id=budget_id)
    budget = cost_code_service.update_budget(budget_id, json_body(), current_user())
    return jsonify(budget.to_dict())


@project_bp.route("/<project_id>/financials", methods=["GET"])
def financials(project_id):
    return jsonify(project_financials_service.get_project_financials(project_id))
