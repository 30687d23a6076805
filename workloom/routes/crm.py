"""
CRM routes — import/export, field mappings, and Salesforce/HubSpot extras.
"""
from flask import Blueprint, jsonify

from workloom.config import HUBSPOT, SALESFORCE
from workloom.errors import ValidationError
from workloom.routes import int_arg, json_body, services, user_id

bp = Blueprint('crm', __name__, url_prefix='/api/accounts/<account_id>')


def _profile_ids(data, *keys):
    """First list found under `keys`; items may be ids or {'id': ...} objects."""
    for key in keys:
        if key in data:
            items = data[key]
            if not isinstance(items, list):
                raise ValidationError(f"{key} must be a list")
            return [item.get('id') if isinstance(item, dict) else item for item in items]
    return None


def _export(account_id, data, provider=None):
    svc = services()
    ids = _profile_ids(data, 'profile_ids', 'recordIds', 'record_ids', 'profiles')
    if ids is None and data.get('mapping_id'):
        ids = svc.sync.profile_ids_for_mapping(user_id(), data['mapping_id'])
    op = svc.sync.export_data(
        user_id(), account_id, ids or [],
        field_mappings=data.get('field_mappings'), provider=provider,
    )
    return jsonify(op.to_dict())


# ── Generic CRM ──────────────────────────────────────────────────────────────

@bp.route('/crm/import', methods=['POST'])
def import_records(account_id):
    data = json_body()
    if not data.get('mapping_id'):
        raise ValidationError('mapping_id is required')
    op = services().sync.import_data(
        user_id(), account_id, data['mapping_id'],
        filters=data.get('filters'), field_mappings=data.get('field_mappings'),
    )
    return jsonify(op.to_dict())


@bp.route('/crm/export', methods=['POST'])
def export_records(account_id):
    return _export(account_id, json_body())


@bp.route('/crm/operations', methods=['GET'])
def operation_history(account_id):
    ops = services().sync.operation_history(user_id(), account_id, limit=int_arg('limit', 50))
    return jsonify([op.to_dict() for op in ops])


@bp.route('/crm/preview-import', methods=['POST'])
def preview_import(account_id):
    data = json_body()
    return jsonify(services().sync.preview_import(
        user_id(), account_id, filters=data.get('filters'), field_mappings=data.get('field_mappings'),
    ))


@bp.route('/crm/field-mappings', methods=['GET'])
def get_field_mappings(account_id):
    return jsonify(services().sync.get_field_mappings(user_id(), account_id))


@bp.route('/crm/field-mappings', methods=['PUT'])
def update_field_mappings(account_id):
    data = json_body()
    return jsonify(services().sync.update_field_mappings(user_id(), account_id, data.get('mappings')))


# ── Salesforce ───────────────────────────────────────────────────────────────

def _connector(account_id, provider):
    svc = services()
    account = svc.registry.get(user_id(), account_id, provider=provider)
    return svc.registry.connector_for(account)


@bp.route('/salesforce/objects', methods=['GET'])
def salesforce_objects(account_id):
    return jsonify(_connector(account_id, SALESFORCE).list_objects())


@bp.route('/salesforce/objects/<object_type>/fields', methods=['GET'])
def salesforce_fields(account_id, object_type):
    return jsonify(_connector(account_id, SALESFORCE).list_fields(object_type))


@bp.route('/salesforce/sync', methods=['POST'])
def salesforce_sync(account_id):
    return _export(account_id, json_body(), provider=SALESFORCE)


# ── HubSpot ──────────────────────────────────────────────────────────────────

@bp.route('/hubspot/properties/<object_type>', methods=['GET'])
def hubspot_properties(account_id, object_type):
    return jsonify(_connector(account_id, HUBSPOT).list_properties(object_type))


@bp.route('/hubspot/workflows', methods=['GET'])
def hubspot_workflows(account_id):
    return jsonify(_connector(account_id, HUBSPOT).list_workflows())


@bp.route('/hubspot/workflows/<workflow_id>/trigger', methods=['POST'])
def hubspot_trigger_workflow(account_id, workflow_id):
    data = json_body()
    ids = _profile_ids(data, 'profile_ids', 'contactIds', 'profiles') or []
    op = services().sync.trigger_workflow(user_id(), account_id, workflow_id, ids)
    return jsonify(op.to_dict())


@bp.route('/hubspot/contacts', methods=['POST'])
def hubspot_contacts(account_id):
    return _export(account_id, json_body(), provider=HUBSPOT)
