# map_relay/auth.py
# Authorization predicates and the socket handler guard

import logging
from functools import wraps

from flask import request

from map_relay import config


def is_authenticated(session):
    return session is not None and session.authenticated


def is_dm(session):
    return is_authenticated(session) and session.role == config.ROLE_DM


def is_player(session):
    return is_authenticated(session) and session.role == config.ROLE_PLAYER


ACTION_REQUIREMENTS = {
    'token:place': is_dm,
    'token:move': is_dm,
    'token:update': is_dm,
    'token:remove': is_dm,
    'movable_factions:update': is_dm,
    'faction_stats:update': is_dm,
    'faction_stats:delete': is_dm,
    'move_proposal:approve': is_dm,
    'move_proposal:reject': is_dm,
    'move_proposals:clear_all': is_dm,
    'move_proposal:create': is_player,
    'move_proposal:update': is_player,
    'move_proposal:cancel': is_player,
    'request_tokens': is_authenticated,
}

_REQUIREMENT_LABELS = {
    is_dm: "DM role",
    is_player: "player role",
    is_authenticated: "authentication",
}


def is_permitted(action, session):
    predicate = ACTION_REQUIREMENTS.get(action)
    return predicate is not None and predicate(session)


def denial_message(action):
    label = _REQUIREMENT_LABELS.get(ACTION_REQUIREMENTS.get(action), "permission")
    return f"Unauthorized: {action} requires {label}"


def make_guard(registry, reject):
    """Build a decorator that runs a socket handler only when the caller may perform the action.

    The wrapped handler is called as handler(session, data). On denial, reject(sid, action)
    is called and nothing else happens.
    """
    def guard(action):
        def decorator(f):
            @wraps(f)
            def decorated(data=None):
                session = registry.get(request.sid)
                if not is_permitted(action, session):
                    logging.warning(f"Rejected {action} from {request.sid} (session: {session})")
                    reject(request.sid, action)
                    return
                return f(session, data)
            return decorated
        return decorator
    return guard
