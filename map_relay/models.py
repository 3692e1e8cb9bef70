# map_relay/models.py
# Record builders and payload coercion for tokens, faction stats, proposals

import time

from map_relay import config

TOKEN_FIELDS = ('id', 'x', 'y', 'name', 'faction', 'hp', 'max_hp', 'current_hp', 'attack', 'counterattack',
                'special', 'notes', 'color', 'playerid', 'visible_to_players', 'timestamp')
TOKEN_MUTABLE_FIELDS = ('x', 'y', 'name', 'faction', 'hp', 'max_hp', 'current_hp', 'attack', 'counterattack',
                        'special', 'notes', 'color', 'visible_to_players')
TOKEN_INT_FIELDS = ('x', 'y', 'hp', 'max_hp', 'current_hp')

FACTION_FIELDS = ('id', 'faction_name', 'current_hp', 'max_hp', 'force_stat', 'wealth_stat', 'cunning_stat',
                  'magic_stat', 'treasure_stat', 'is_visible')
FACTION_MUTABLE_FIELDS = ('current_hp', 'max_hp', 'force_stat', 'wealth_stat', 'cunning_stat', 'magic_stat',
                          'treasure_stat', 'is_visible')
FACTION_INT_FIELDS = ('current_hp', 'max_hp', 'force_stat', 'wealth_stat', 'cunning_stat', 'treasure_stat')

PROPOSAL_FIELDS = ('id', 'token_id', 'original_x', 'original_y', 'proposed_x', 'proposed_y', 'proposed_by_session')


def to_int(value, default=0):
    """Coerce a payload number to int, falling back to default on anything malformed."""
    if isinstance(value, bool):
        return int(value)
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def to_bool(value, default):
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ('false', '0', 'no', 'off', '')
    return bool(value)


def to_text(value, default=''):
    if value is None:
        return default
    return str(value)


def utc_timestamp():
    return time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime())


def _coerce_token_field(key, value, current=None):
    if key in TOKEN_INT_FIELDS:
        return to_int(value, current if current is not None else 0)
    if key == 'visible_to_players':
        return to_bool(value, True)
    return to_text(value)


def build_token(token_id, data, playerid=None):
    """New token record from a token:place payload. Missing or malformed fields get defaults."""
    hp = to_int(data.get('hp'))
    max_hp = to_int(data['max_hp'], hp) if data.get('max_hp') is not None else hp
    current_hp = to_int(data['current_hp'], hp) if data.get('current_hp') is not None else hp
    return {
        'id': token_id,
        'x': to_int(data.get('x')),
        'y': to_int(data.get('y')),
        'name': to_text(data.get('name')) or f"Token {token_id}",
        'faction': to_text(data.get('faction')),
        'hp': hp,
        'max_hp': max_hp,
        'current_hp': current_hp,
        'attack': to_text(data.get('attack')) or '0',
        'counterattack': to_text(data.get('counterattack')) or '0',
        'special': to_text(data.get('special')),
        'notes': to_text(data.get('notes')),
        'color': to_text(data.get('color')) or config.DEFAULT_TOKEN_COLOR,
        'playerid': playerid,
        'visible_to_players': to_bool(data.get('visible_to_players'), True),
        'timestamp': utc_timestamp(),
    }


def token_changes(token, data):
    """Coerced subset of a token:update payload; unknown keys and 'id' are dropped."""
    changes = {}
    for key in TOKEN_MUTABLE_FIELDS:
        if key in data:
            changes[key] = _coerce_token_field(key, data[key], token.get(key))
    return changes


def build_faction_stats(faction_id, faction_name, data):
    record = {
        'id': faction_id,
        'faction_name': faction_name,
        'current_hp': 0,
        'max_hp': 0,
        'force_stat': 0,
        'wealth_stat': 0,
        'cunning_stat': 0,
        'magic_stat': config.DEFAULT_MAGIC_STAT,
        'treasure_stat': 0,
        'is_visible': False,
    }
    record.update(faction_changes(record, data))
    return record


def faction_changes(record, data):
    changes = {}
    for key in FACTION_MUTABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key in FACTION_INT_FIELDS:
            changes[key] = to_int(value, record.get(key, 0))
        elif key == 'is_visible':
            changes[key] = to_bool(value, False)
        else:
            changes[key] = to_text(value, config.DEFAULT_MAGIC_STAT) or config.DEFAULT_MAGIC_STAT
    return changes


def build_move_proposal(proposal_id, token_id, original_x, original_y, proposed_x, proposed_y, session_id):
    return {
        'id': proposal_id,
        'token_id': token_id,
        'original_x': to_int(original_x),
        'original_y': to_int(original_y),
        'proposed_x': to_int(proposed_x),
        'proposed_y': to_int(proposed_y),
        'proposed_by_session': session_id,
    }


def build_movable_factions(entries):
    """Normalize a movable_factions:update payload to an ordered list of {faction_name, is_movable}."""
    result = []
    if not isinstance(entries, (list, tuple)):
        return result
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        name = to_text(entry.get('faction_name')).strip()
        if not name:
            continue
        result.append({'faction_name': name, 'is_movable': to_bool(entry.get('is_movable'), False)})
    return result


def normalize_loaded(record, fields):
    """Restrict a stored row to the known attribute set."""
    return {key: record.get(key) for key in fields if key in record}
