from map_relay import auth
from map_relay import visibility
from map_relay.sessions import Session, SessionRegistry, authenticate, set_role


def _session(role=None, authenticated=True):
    session = Session('sid')
    session.authenticated = authenticated
    session.role = role
    return session


def test_tokens_default_visible_factions_default_hidden():
    tokens = [{'id': 1}, {'id': 2, 'visible_to_players': False}, {'id': 3, 'visible_to_players': True}]
    factions = [{'faction_name': 'A'}, {'faction_name': 'B', 'is_visible': True},
                {'faction_name': 'C', 'is_visible': False}]
    assert [t['id'] for t in visibility.visible_tokens('player', tokens)] == [1, 3]
    assert [f['faction_name'] for f in visibility.visible_factions('player', factions)] == ['B']
    assert len(visibility.visible_tokens('dm', tokens)) == 3
    assert len(visibility.visible_factions('dm', factions)) == 3


def test_unset_role_sees_player_view():
    assert visibility.visible_tokens(None, [{'id': 1, 'visible_to_players': False}]) == []


def test_authenticate_dm_requires_password():
    session = Session('sid')
    assert authenticate(session, 'dm', 'wrong', 'secret') == (False, "Invalid DM password")
    assert not session.authenticated
    assert authenticate(session, 'dm', 'secret', 'secret') == (True, None)
    assert session.role == 'dm' and session.dm_verified


def test_authenticate_player_always_succeeds_and_unknown_role_fails():
    session = Session('sid')
    assert authenticate(session, 'player', None, 'secret') == (True, None)
    assert session.role == 'player'
    other = Session('sid2')
    success, message = authenticate(other, 'admin', 'secret', 'secret')
    assert not success and 'admin' in message
    assert not other.authenticated


def test_set_role_rules():
    session = Session('sid')
    assert set_role(session, 'player')[0] is False

    authenticate(session, 'player', None, 'secret')
    assert set_role(session, 'dm') == (False, "DM role requires the DM password")
    assert session.role == 'player'

    dm = Session('dm-sid')
    authenticate(dm, 'dm', 'secret', 'secret')
    assert set_role(dm, 'player') == (True, None)
    assert dm.role == 'player'
    assert set_role(dm, 'dm') == (True, None)
    assert set_role(dm, 'spectator')[0] is False


def test_guard_predicates():
    assert not auth.is_authenticated(None)
    assert not auth.is_authenticated(_session('dm', authenticated=False))
    assert auth.is_dm(_session('dm'))
    assert not auth.is_dm(_session('player'))
    assert auth.is_player(_session('player'))
    assert not auth.is_player(_session('dm'))


def test_action_table():
    dm, player, anonymous = _session('dm'), _session('player'), Session('anon')
    for action in ('token:place', 'token:move', 'token:update', 'token:remove', 'movable_factions:update',
                   'faction_stats:update', 'faction_stats:delete', 'move_proposal:approve',
                   'move_proposal:reject', 'move_proposals:clear_all'):
        assert auth.is_permitted(action, dm)
        assert not auth.is_permitted(action, player)
        assert not auth.is_permitted(action, anonymous)
    for action in ('move_proposal:create', 'move_proposal:update', 'move_proposal:cancel'):
        assert auth.is_permitted(action, player)
        assert not auth.is_permitted(action, dm)
    assert auth.is_permitted('request_tokens', player)
    assert auth.is_permitted('request_tokens', dm)
    assert not auth.is_permitted('request_tokens', anonymous)
    assert not auth.is_permitted('unknown:action', dm)
    assert auth.denial_message('token:place') == "Unauthorized: token:place requires DM role"


def test_registry_lists_only_authenticated():
    registry = SessionRegistry()
    first = registry.add('a')
    registry.add('b')
    authenticate(first, 'player', None, 'secret')
    assert [s.sid for s in registry.authenticated()] == ['a']
    assert registry.remove('a') is first
    assert registry.remove('a') is None
    assert len(registry) == 1
