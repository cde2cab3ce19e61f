"""
Admin JSON API over the stored submissions
"""

from flask import Blueprint, jsonify, request

from middleware.security import require_admin_token
from routes.forms import build_submission_service

admin_bp = Blueprint('admin', __name__)

MAX_LIST_LIMIT = 500


@admin_bp.route('/bilans')
@require_admin_token
def list_bilans():
    status = request.args.get('status') or None
    limit = request.args.get('limit', 100, type=int)
    limit = max(1, min(limit, MAX_LIST_LIMIT))

    requests = build_submission_service().list_bilan_requests(status, limit)
    return jsonify({'count': len(requests), 'requests': requests})


@admin_bp.route('/bilans/<int:request_id>/status', methods=['POST'])
@require_admin_token
def update_bilan_status(request_id):
    data = request.get_json(silent=True) or {}
    status = (data.get('status') or '').strip()
    if not status:
        return jsonify({'error': 'status is required'}), 400
    if len(status) > 20:
        return jsonify({'error': 'status is too long'}), 400

    updated = build_submission_service().update_bilan_status(request_id, status, data.get('notes'))
    if not updated:
        return jsonify({'error': 'Request not found or not updated'}), 404
    return jsonify({'id': request_id, 'status': status, 'updated': True})


@admin_bp.route('/ebook/stats')
@require_admin_token
def ebook_stats():
    stats = build_submission_service().ebook_stats()
    if stats is None:
        return jsonify({'error': 'Statistics unavailable'}), 503
    return jsonify(stats.to_dict())
