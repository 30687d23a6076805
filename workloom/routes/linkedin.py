"""
LinkedIn routes — scraping jobs, ad-hoc search/profile lookups, quota and session status.
"""
from flask import Blueprint, jsonify, request

from workloom.config import LINKEDIN
from workloom.routes import int_arg, json_body, services, user_id

bp = Blueprint('linkedin', __name__, url_prefix='/api/accounts/<account_id>/linkedin')


@bp.route('/scrape', methods=['POST'])
def start_scrape(account_id):
    data = json_body()
    job = services().scheduler.submit(
        user_id(), account_id,
        (data.get('type') or data.get('job_type') or '').upper(),
        data.get('config') or {},
    )
    return jsonify(job.to_dict()), 202


@bp.route('/jobs', methods=['GET'])
def list_jobs(account_id):
    status = request.args.get('status')
    jobs = services().scheduler.list_for_account(
        user_id(), account_id, status=status.upper() if status else None, limit=int_arg('limit', 50),
    )
    return jsonify([j.to_dict() for j in jobs])


@bp.route('/jobs/<job_id>', methods=['GET'])
def get_job(account_id, job_id):
    job = services().scheduler.get(user_id(), job_id, account_id=account_id)
    return jsonify(job.to_dict(include_results=True))


@bp.route('/jobs/<job_id>/cancel', methods=['POST'])
def cancel_job(account_id, job_id):
    job = services().scheduler.cancel(user_id(), job_id, account_id=account_id)
    return jsonify(job.to_dict())


@bp.route('/stats', methods=['GET'])
def account_stats(account_id):
    svc = services()
    account = svc.registry.get(user_id(), account_id, provider=LINKEDIN)
    config = svc.registry.config_for(account)
    return jsonify({
        'stats': account.stats or {},
        'usage': svc.limiter.usage(account.id, config.daily_limit),
        'health': svc.registry.breaker(account).get_health(),
    })


@bp.route('/config', methods=['PUT'])
def update_config(account_id):
    svc = services()
    svc.registry.get(user_id(), account_id, provider=LINKEDIN)
    account = svc.registry.update(user_id(), account_id, {'config': json_body()})
    return jsonify(account.to_dict())


@bp.route('/validate-session', methods=['POST'])
def validate_session(account_id):
    return jsonify(services().validator.validate_session(user_id(), account_id))


@bp.route('/profile', methods=['POST'])
def fetch_profile(account_id):
    data = json_body()
    profile_url = data.get('profile_url') or data.get('profileUrl')
    profile = services().scheduler.fetch_profile(user_id(), account_id, profile_url)
    return jsonify(profile)


@bp.route('/search', methods=['POST'])
def search_profiles(account_id):
    data = json_body()
    result = services().scheduler.search(
        user_id(), account_id,
        search_query=data.get('search_query') or data.get('searchQuery'),
        filters=data.get('filters'),
        limit=data.get('limit', 25),
        cursor=data.get('cursor'),
    )
    return jsonify(result)
