# map_relay/routes_core.py
# Blueprint: read-only HTTP endpoints (token snapshot, map diagnostics)

from flask import Blueprint, jsonify, current_app

from map_relay.map_info import describe_map_image

core_bp = Blueprint('core', __name__)


def _relay():
    return current_app.extensions['map_relay']


@core_bp.route('/api/tokens', methods=['GET'])
def list_tokens():
    """Full, unfiltered token collection for diagnostics and integrations."""
    return jsonify(_relay()['repository'].tokens())


@core_bp.route('/api/map-info', methods=['GET'])
def map_info():
    info = describe_map_image(current_app.config['MAP_IMAGE_PATH'])
    if info is None:
        return jsonify({"error": "Map image not found"}), 404
    return jsonify(info)
