import pytest

from map_relay.broadcast import BroadcastRouter
from map_relay.repository import StateRepository
from map_relay.sessions import SessionRegistry, authenticate


@pytest.fixture()
def setup():
    registry = SessionRegistry()
    sent = []
    router = BroadcastRouter(registry, lambda event, payload, sid: sent.append((sid, event, payload)))
    authenticate(registry.add('dm'), 'dm', 'pw', 'pw')
    authenticate(registry.add('player'), 'player', None, 'pw')
    registry.add('anonymous')
    return router, sent


def _for(sent, sid):
    return [(event, payload) for s, event, payload in sent if s == sid]


def test_token_event_filtered_by_visibility(setup):
    router, sent = setup
    router.token_event('token:placed', {'id': 1, 'visible_to_players': True})
    router.token_event('token:placed', {'id': 2, 'visible_to_players': False})
    assert [p['id'] for _, p in _for(sent, 'dm')] == [1, 2]
    assert [p['id'] for _, p in _for(sent, 'player')] == [1]
    assert _for(sent, 'anonymous') == []


def test_token_hidden_sends_removal_to_players(setup):
    router, sent = setup
    router.token_updated({'id': 1, 'visible_to_players': True}, {'id': 1, 'visible_to_players': False})
    assert _for(sent, 'dm') == [('token:updated', {'id': 1, 'visible_to_players': False})]
    assert _for(sent, 'player') == [('token:removed', {'id': 1})]


def test_token_revealed_sends_update_to_players(setup):
    router, sent = setup
    token = {'id': 1, 'visible_to_players': True}
    router.token_updated({'id': 1, 'visible_to_players': False}, token)
    assert _for(sent, 'player') == [('token:updated', token)]


def test_token_staying_hidden_sends_nothing_to_players(setup):
    router, sent = setup
    router.token_updated({'id': 1, 'visible_to_players': False}, {'id': 1, 'visible_to_players': False})
    assert _for(sent, 'player') == []
    assert len(_for(sent, 'dm')) == 1


def test_faction_updates_follow_is_visible(setup):
    router, sent = setup
    hidden = {'faction_name': 'Cult', 'is_visible': False}
    shown = {'faction_name': 'Cult', 'is_visible': True}
    router.faction_updated(None, hidden)
    assert _for(sent, 'player') == []
    router.faction_updated(hidden, shown)
    assert _for(sent, 'player') == [('faction_stats:updated', shown)]
    sent.clear()
    router.faction_updated(shown, hidden)
    assert _for(sent, 'player') == [('faction_stats:deleted', {'faction_name': 'Cult'})]
    assert _for(sent, 'dm') == [('faction_stats:updated', hidden)]


def test_to_all_skips_unauthenticated(setup):
    router, sent = setup
    router.to_all('move_proposals:cleared', {})
    assert sorted(sid for sid, _, _ in sent) == ['dm', 'player']


def test_push_snapshot_filters_for_role(setup):
    router, sent = setup
    repo = StateRepository()
    repo.place_token({'x': 0, 'y': 0})
    repo.place_token({'x': 0, 'y': 0, 'visible_to_players': False})
    repo.upsert_faction_stats({'faction_name': 'Secret'})
    repo.create_move_proposal(1, 0, 0, 1, 1, 'player')
    registry = router.registry
    router.push_snapshot(registry.get('player'), repo)
    events = dict(_for(sent, 'player'))
    assert [t['id'] for t in events['tokens:load']] == [1]
    assert events['faction_stats:load'] == []
    assert len(events['move_proposals:load']) == 1
    assert events['movable_factions:load'] == []

    router.push_snapshot(registry.get('dm'), repo)
    events = dict(_for(sent, 'dm'))
    assert len(events['tokens:load']) == 2
    assert len(events['faction_stats:load']) == 1
