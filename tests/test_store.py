import sqlite3

import pytest

from map_relay.repository import StateRepository
from map_relay.store import RecordStore, PersistenceMirror, load_into


@pytest.fixture()
def store(tmp_path):
    store = RecordStore(str(tmp_path / 'store.db'))
    store.init_schema()
    return store


def _token(token_id, **fields):
    token = StateRepository().place_token(dict({'x': 1, 'y': 2}, **fields))
    token['id'] = token_id
    return token


def test_insert_update_delete_tokens(store):
    store.insert('tokens', _token(1, name='Orc'))
    store.insert('tokens', _token(2, visible_to_players=False))
    assert store.update('tokens', {'id': 1}, {'x': 50, 'y': 60}) == 1
    rows = store.list('tokens')
    assert [r['id'] for r in rows] == [1, 2]
    assert (rows[0]['x'], rows[0]['y'], rows[0]['name']) == (50, 60, 'Orc')
    assert rows[1]['visible_to_players'] is False
    assert store.delete('tokens', {'id': 2}) == 1
    assert store.delete('tokens', {'id': 2}) == 0
    assert len(store.list('tokens')) == 1


def test_faction_upsert_keyed_on_name(store):
    record = {'id': 1, 'faction_name': 'Red Hand', 'current_hp': 5, 'max_hp': 5, 'force_stat': 1,
              'wealth_stat': 0, 'cunning_stat': 0, 'magic_stat': 'None', 'treasure_stat': 0, 'is_visible': False}
    store.upsert('faction_stats', record, 'faction_name')
    store.upsert('faction_stats', dict(record, force_stat=4, is_visible=True), 'faction_name')
    rows = store.list('faction_stats')
    assert len(rows) == 1
    assert rows[0]['force_stat'] == 4
    assert rows[0]['is_visible'] is True


def test_move_proposals_unique_per_token(store):
    proposal = {'id': 1, 'token_id': 5, 'original_x': 0, 'original_y': 0, 'proposed_x': 1, 'proposed_y': 1,
                'proposed_by_session': 'p1'}
    store.insert('move_proposals', proposal)
    with pytest.raises(sqlite3.IntegrityError):
        store.insert('move_proposals', dict(proposal, id=2))
    store.delete('move_proposals', {'token_id': 5})
    store.insert('move_proposals', dict(proposal, id=2))
    store.delete('move_proposals')
    assert store.list('move_proposals') == []


def test_replace_all_movable_factions(store):
    store.replace_all('movable_factions', [{'faction_name': 'A', 'is_movable': True}])
    store.replace_all('movable_factions', [{'faction_name': 'B', 'is_movable': False},
                                           {'faction_name': 'C', 'is_movable': True}])
    assert store.list('movable_factions') == [{'faction_name': 'B', 'is_movable': False},
                                              {'faction_name': 'C', 'is_movable': True}]


def test_unknown_collection_is_rejected(store):
    with pytest.raises(ValueError):
        store.insert('users', {'id': 1})
    with pytest.raises(ValueError):
        store.delete('tokens', {'password': 'x'})


def test_mirror_logs_and_drops_failures(store, caplog):
    mirror = PersistenceMirror(store)
    try:
        mirror.insert('tokens', _token(1))
        mirror.insert('tokens', _token(1))
        mirror.update('tokens', {'id': 1}, {'x': 9})
        mirror.flush(timeout=5)
    finally:
        mirror.shutdown()
    assert 'Persistence failure' in caplog.text
    rows = store.list('tokens')
    assert len(rows) == 1
    assert rows[0]['x'] == 9


def test_load_into_restores_state(store):
    store.insert('tokens', _token(3, name='Saved'))
    store.replace_all('movable_factions', [{'faction_name': 'A', 'is_movable': True}])
    repo = StateRepository()
    assert load_into(store, repo) is True
    assert repo.get_token(3)['name'] == 'Saved'
    assert repo.place_token({'x': 0, 'y': 0})['id'] == 4
    assert repo.movable_factions() == [{'faction_name': 'A', 'is_movable': True}]


def test_load_into_failure_starts_empty(tmp_path):
    # A directory where the database file should be makes every connection fail
    db_path = tmp_path / 'not-a-db'
    db_path.mkdir()
    repo = StateRepository()
    repo.place_token({'x': 0, 'y': 0})
    assert load_into(RecordStore(str(db_path)), repo) is False
    assert repo.tokens() == []


def test_high_water_marks_survive_deletes(store):
    store.insert('tokens', _token(1))
    store.insert('tokens', _token(4))
    store.delete('tokens', {'id': 4})
    store.upsert('faction_stats', {'id': 2, 'faction_name': 'A', 'is_visible': False}, 'faction_name')
    store.delete('faction_stats', {'faction_name': 'A'})
    store.replace_all('movable_factions', [{'faction_name': 'A', 'is_movable': True}])
    assert store.high_water_marks() == {'tokens': 4, 'faction_stats': 2}

    repo = StateRepository()
    assert load_into(store, repo) is True
    assert repo.place_token({'x': 0, 'y': 0})['id'] == 5
    assert repo.upsert_faction_stats({'faction_name': 'B'})['id'] == 3


def test_high_water_never_decreases(store):
    store.insert('tokens', _token(7))
    store.delete('tokens', {'id': 7})
    store.insert('tokens', _token(3))
    assert store.high_water_marks() == {'tokens': 7}
