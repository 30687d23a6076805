"""
Account routes — CRUD, activation toggle, connection test.
"""
from flask import Blueprint, jsonify, request

from workloom.routes import json_body, services, user_id

bp = Blueprint('accounts', __name__, url_prefix='/api/accounts')


@bp.route('', methods=['GET'])
def list_accounts():
    provider = request.args.get('provider')
    accounts = services().registry.list_for_user(user_id(), provider=provider.upper() if provider else None)
    return jsonify([a.to_dict() for a in accounts])


@bp.route('', methods=['POST'])
def create_account():
    data = json_body()
    account = services().registry.create(
        user_id(),
        (data.get('provider') or '').upper(),
        data.get('account_name'),
        data.get('credentials') or {},
        data.get('config'),
    )
    return jsonify(account.to_dict()), 201


@bp.route('/<account_id>', methods=['GET'])
def get_account(account_id):
    return jsonify(services().registry.get(user_id(), account_id).to_dict())


@bp.route('/<account_id>', methods=['PUT'])
def update_account(account_id):
    account = services().registry.update(user_id(), account_id, json_body())
    return jsonify(account.to_dict())


@bp.route('/<account_id>', methods=['DELETE'])
def delete_account(account_id):
    services().registry.delete(user_id(), account_id)
    return jsonify({'ok': True})


@bp.route('/<account_id>/toggle', methods=['POST'])
def toggle_account(account_id):
    return jsonify(services().registry.toggle(user_id(), account_id).to_dict())


@bp.route('/<account_id>/test', methods=['POST'])
def test_account(account_id):
    """Check the provider. 200 either way; `success` carries the outcome."""
    return jsonify(services().validator.test(user_id(), account_id))
