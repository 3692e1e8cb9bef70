# map_relay/sockets.py
# All SocketIO event handlers: guard -> repository -> record store -> broadcast

import logging

from flask import request

from map_relay import models
from map_relay.auth import make_guard, denial_message
from map_relay.repository import NotFound
from map_relay.sessions import authenticate as authenticate_session, set_role as set_session_role


def _payload(action, data):
    if not isinstance(data, dict):
        logging.warning(f"Ignoring {action} from {request.sid}: payload is not an object.")
        return None
    return data


def _id_from(data, *keys):
    """Accept either a bare id or an object carrying it under one of `keys`."""
    if isinstance(data, dict):
        for key in keys:
            if data.get(key) is not None:
                return models.to_int(data[key], None)
        return None
    return models.to_int(data, None)


def register_socket_handlers(sio, repository, registry, router, mirror, dm_password):
    """Register all SocketIO event handlers on the given SocketIO instance."""

    def reply(sid, event, payload):
        sio.emit(event, payload, to=sid)

    def reply_error(sid, message):
        reply(sid, 'error', {'message': message})

    def reject(sid, action):
        reply_error(sid, denial_message(action))

    guard = make_guard(registry, reject)

    @sio.on('connect')
    def handle_connect(auth=None):
        registry.add(request.sid)
        logging.info(f"Client connected: {request.sid}")

    @sio.on('disconnect')
    def handle_disconnect(*args):
        registry.remove(request.sid)
        logging.info(f"Client disconnected: {request.sid}")

    @sio.on_error_default
    def handle_error(e):
        logging.error(f"Error handling event from {request.sid}: {e}", exc_info=True)
        reply_error(request.sid, "Internal server error")

    # --- Session ---

    @sio.on('authenticate')
    def handle_authenticate(data=None):
        data = _payload('authenticate', data)
        if data is None:
            reply(request.sid, 'auth_result', {'success': False, 'message': "Invalid request"})
            return
        session = registry.get(request.sid) or registry.add(request.sid)
        success, message = authenticate_session(session, data.get('role'), data.get('password'), dm_password)
        if not success:
            logging.warning(f"Authentication failed for {request.sid} as {data.get('role')!r}: {message}")
            reply(request.sid, 'auth_result', {'success': False, 'message': message})
            return
        logging.info(f"Client {request.sid} authenticated as {session.role}")
        reply(request.sid, 'auth_result', {'success': True, 'role': session.role})
        router.push_snapshot(session, repository)

    @sio.on('set_role')
    def handle_set_role(data=None):
        role = data.get('role') if isinstance(data, dict) else data
        session = registry.get(request.sid)
        if session is None:
            reply_error(request.sid, "Not authenticated")
            return
        success, message = set_session_role(session, role)
        if not success:
            logging.warning(f"set_role {role!r} rejected for {request.sid}: {message}")
            reply_error(request.sid, message)
            return
        logging.info(f"Client {request.sid} switched role to {session.role}")
        router.push_snapshot(session, repository)

    @sio.on('request_tokens')
    @guard('request_tokens')
    def handle_request_tokens(session, data):
        router.push_snapshot(session, repository)

    # --- Tokens ---

    @sio.on('token:place')
    @guard('token:place')
    def handle_token_place(session, data):
        data = _payload('token:place', data)
        if data is None:
            return
        with repository.lock:
            token = repository.place_token(data, playerid=session.sid)
            mirror.insert('tokens', token)
            router.token_event('token:placed', token)
        logging.info(f"Token placed: {token['id']} ({token['name']}) by {session.sid}")

    @sio.on('token:move')
    @guard('token:move')
    def handle_token_move(session, data):
        data = _payload('token:move', data)
        if data is None:
            return
        token_id = _id_from(data, 'tokenId', 'token_id', 'id')
        with repository.lock:
            token = repository.move_token(token_id, data.get('x'), data.get('y'))
            if token is None:
                logging.debug(f"token:move ignored, unknown token {token_id}")
                return
            mirror.update('tokens', {'id': token['id']}, {'x': token['x'], 'y': token['y']})
            router.token_event('token:moved', token, {'tokenId': token['id'], 'x': token['x'], 'y': token['y']})
        logging.debug(f"Token moved: {token['id']} to ({token['x']}, {token['y']})")

    @sio.on('token:update')
    @guard('token:update')
    def handle_token_update(session, data):
        data = _payload('token:update', data)
        if data is None:
            return
        token_id = _id_from(data, 'id', 'tokenId')
        with repository.lock:
            previous = repository.get_token(token_id)
            token = repository.update_token(token_id, data)
            if token is None:
                logging.debug(f"token:update ignored, unknown token {token_id}")
                return
            fields = {key: token[key] for key in models.TOKEN_MUTABLE_FIELDS}
            mirror.update('tokens', {'id': token['id']}, fields)
            router.token_updated(previous, token)
        logging.info(f"Token updated: {token['id']} (visible_to_players={token['visible_to_players']})")

    @sio.on('token:remove')
    @guard('token:remove')
    def handle_token_remove(session, data):
        token_id = _id_from(data, 'tokenId', 'token_id', 'id')
        if token_id is None:
            logging.warning(f"token:remove from {session.sid} without a token id.")
            return
        with repository.lock:
            removed = repository.remove_token(token_id)
            mirror.delete('tokens', {'id': token_id})
            router.to_all('token:removed', {'id': token_id})
        logging.info(f"Token removed: {token_id}" + ("" if removed else " (was not present)"))

    # --- Faction stats ---

    @sio.on('faction_stats:update')
    @guard('faction_stats:update')
    def handle_faction_stats_update(session, data):
        data = _payload('faction_stats:update', data)
        if data is None:
            return
        faction_name = models.to_text(data.get('faction_name')).strip()
        if not faction_name:
            reply_error(session.sid, "faction_name is required")
            return
        with repository.lock:
            previous = repository.get_faction_stats(faction_name)
            record = repository.upsert_faction_stats(dict(data, faction_name=faction_name))
            mirror.upsert('faction_stats', record, 'faction_name')
            router.faction_updated(previous, record)
        logging.info(f"Faction stats {'updated' if previous else 'created'}: {faction_name} (visible={record['is_visible']})")

    @sio.on('faction_stats:delete')
    @guard('faction_stats:delete')
    def handle_faction_stats_delete(session, data):
        faction_name = data.get('faction_name') if isinstance(data, dict) else data
        faction_name = models.to_text(faction_name).strip()
        if not faction_name:
            reply_error(session.sid, "faction_name is required")
            return
        with repository.lock:
            repository.delete_faction_stats(faction_name)
            mirror.delete('faction_stats', {'faction_name': faction_name})
            router.to_all('faction_stats:deleted', {'faction_name': faction_name})
        logging.info(f"Faction stats deleted: {faction_name}")

    # --- Move proposals ---

    @sio.on('move_proposal:create')
    @guard('move_proposal:create')
    def handle_move_proposal_create(session, data):
        data = _payload('move_proposal:create', data)
        if data is None:
            return
        token_id = _id_from(data, 'token_id', 'tokenId')
        if token_id is None:
            reply_error(session.sid, "token_id is required")
            return
        with repository.lock:
            proposal, superseded = repository.create_move_proposal(
                token_id, data.get('original_x'), data.get('original_y'),
                data.get('proposed_x'), data.get('proposed_y'), session.sid)
            if superseded is not None:
                mirror.delete('move_proposals', {'token_id': token_id})
                router.to_all('move_proposal:cancelled', {'proposalId': superseded['id']})
            mirror.insert('move_proposals', proposal)
            router.to_all('move_proposal:created', proposal)
        logging.info(f"Move proposal {proposal['id']} created for token {token_id} by {session.sid}"
                     + (f", superseding {superseded['id']}" if superseded else ""))

    @sio.on('move_proposal:update')
    @guard('move_proposal:update')
    def handle_move_proposal_update(session, data):
        data = _payload('move_proposal:update', data)
        if data is None:
            return
        token_id = _id_from(data, 'token_id', 'tokenId')
        with repository.lock:
            try:
                proposal = repository.update_move_proposal(token_id, data.get('proposed_x'), data.get('proposed_y'))
            except NotFound as e:
                reply_error(session.sid, str(e))
                return
            mirror.update('move_proposals', {'token_id': proposal['token_id']},
                          {'proposed_x': proposal['proposed_x'], 'proposed_y': proposal['proposed_y']})
            router.to_all('move_proposal:updated', proposal)
        logging.debug(f"Move proposal {proposal['id']} now targets ({proposal['proposed_x']}, {proposal['proposed_y']})")

    @sio.on('move_proposal:approve')
    @guard('move_proposal:approve')
    def handle_move_proposal_approve(session, data):
        proposal_id = _id_from(data, 'proposalId', 'proposal_id', 'id')
        with repository.lock:
            try:
                proposal, token = repository.approve_move_proposal(proposal_id)
            except NotFound as e:
                reply_error(session.sid, str(e))
                return
            if token is not None:
                mirror.update('tokens', {'id': token['id']}, {'x': token['x'], 'y': token['y']})
                router.token_event('token:moved', token, {'tokenId': token['id'], 'x': token['x'], 'y': token['y']})
            mirror.delete('move_proposals', {'id': proposal['id']})
            router.to_all('move_proposal:approved', {'proposalId': proposal['id']})
        logging.info(f"Move proposal {proposal['id']} approved"
                     + ("" if token is not None else f" (token {proposal['token_id']} no longer exists)"))

    def _close_proposal(session, data, take, event):
        proposal_id = _id_from(data, 'proposalId', 'proposal_id', 'id')
        with repository.lock:
            try:
                proposal = take(proposal_id)
            except NotFound as e:
                reply_error(session.sid, str(e))
                return
            mirror.delete('move_proposals', {'id': proposal['id']})
            router.to_all(event, {'proposalId': proposal['id']})
        logging.info(f"Move proposal {proposal['id']} closed: {event}")

    @sio.on('move_proposal:reject')
    @guard('move_proposal:reject')
    def handle_move_proposal_reject(session, data):
        _close_proposal(session, data, repository.reject_move_proposal, 'move_proposal:rejected')

    @sio.on('move_proposal:cancel')
    @guard('move_proposal:cancel')
    def handle_move_proposal_cancel(session, data):
        _close_proposal(session, data, repository.cancel_move_proposal, 'move_proposal:cancelled')

    @sio.on('move_proposals:clear_all')
    @guard('move_proposals:clear_all')
    def handle_move_proposals_clear_all(session, data):
        with repository.lock:
            count = repository.clear_all_proposals()
            mirror.delete('move_proposals')
            router.to_all('move_proposals:cleared', {})
        logging.info(f"Cleared {count} move proposal(s)")

    # --- Movable factions ---

    @sio.on('movable_factions:update')
    @guard('movable_factions:update')
    def handle_movable_factions_update(session, data):
        entries = data.get('factions') if isinstance(data, dict) else data
        with repository.lock:
            config_entries = repository.replace_movable_factions_config(entries)
            mirror.replace_all('movable_factions', config_entries)
            router.to_all('movable_factions:updated', config_entries)
        logging.info(f"Movable factions config replaced ({len(config_entries)} entries)")
