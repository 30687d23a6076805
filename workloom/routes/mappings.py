"""
Mapping routes — CRUD, run/pause/resume, profiles, run history, export.
"""
from flask import Blueprint, Response, jsonify, request

from workloom.routes import int_arg, json_body, services, user_id

bp = Blueprint('mappings', __name__, url_prefix='/api/mappings')


@bp.route('', methods=['GET'])
def list_mappings():
    return jsonify([m.to_dict() for m in services().mappings.list_for_user(user_id())])


@bp.route('', methods=['POST'])
def create_mapping():
    mapping = services().mappings.create(user_id(), json_body())
    return jsonify(mapping.to_dict()), 201


@bp.route('/<mapping_id>', methods=['GET'])
def get_mapping(mapping_id):
    return jsonify(services().mappings.get(user_id(), mapping_id).to_dict())


@bp.route('/<mapping_id>', methods=['PUT'])
def update_mapping(mapping_id):
    return jsonify(services().mappings.update(user_id(), mapping_id, json_body()).to_dict())


@bp.route('/<mapping_id>', methods=['DELETE'])
def delete_mapping(mapping_id):
    services().mappings.delete(user_id(), mapping_id)
    return jsonify({'ok': True})


@bp.route('/<mapping_id>/run', methods=['POST'])
def run_mapping(mapping_id):
    run = services().runs.run(user_id(), mapping_id)
    return jsonify(run.to_dict()), 202


@bp.route('/<mapping_id>/pause', methods=['POST'])
def pause_mapping(mapping_id):
    return jsonify(services().mappings.pause(user_id(), mapping_id).to_dict())


@bp.route('/<mapping_id>/resume', methods=['POST'])
def resume_mapping(mapping_id):
    return jsonify(services().mappings.resume(user_id(), mapping_id).to_dict())


@bp.route('/<mapping_id>/profiles', methods=['GET'])
def mapping_profiles(mapping_id):
    include_stale = request.args.get('include_stale', 'true').lower() != 'false'
    return jsonify(services().mappings.profiles(
        user_id(), mapping_id,
        limit=int_arg('limit', 20), offset=int_arg('offset', 0), include_stale=include_stale,
    ))


@bp.route('/<mapping_id>/runs', methods=['GET'])
def mapping_runs(mapping_id):
    runs = services().mappings.runs(user_id(), mapping_id, limit=int_arg('limit', 50))
    return jsonify([r.to_dict() for r in runs])


@bp.route('/<mapping_id>/runs/<run_id>', methods=['GET'])
def mapping_run_detail(mapping_id, run_id):
    return jsonify(services().mappings.run_detail(user_id(), mapping_id, run_id))


@bp.route('/<mapping_id>/export', methods=['GET'])
def export_mapping(mapping_id):
    fmt = request.args.get('format', 'csv').lower()
    filename, payload, content_type = services().mappings.export(user_id(), mapping_id, fmt)
    return Response(
        payload,
        mimetype=content_type,
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )
