# map_relay/store.py
# SQLite record store (durable mirror) and the background persistence queue

import os
import logging
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

SCHEMA = {
    'tokens': '''CREATE TABLE IF NOT EXISTS tokens (
        id INTEGER PRIMARY KEY,
        x INTEGER NOT NULL,
        y INTEGER NOT NULL,
        name TEXT NOT NULL,
        faction TEXT,
        hp INTEGER DEFAULT 0,
        max_hp INTEGER DEFAULT 0,
        current_hp INTEGER DEFAULT 0,
        attack TEXT DEFAULT '0',
        counterattack TEXT DEFAULT '0',
        special TEXT,
        notes TEXT,
        color TEXT NOT NULL DEFAULT '#FF0000',
        playerid TEXT,
        visible_to_players INTEGER DEFAULT 1,
        timestamp TEXT
    )''',
    'faction_stats': '''CREATE TABLE IF NOT EXISTS faction_stats (
        id INTEGER PRIMARY KEY,
        faction_name TEXT NOT NULL UNIQUE,
        current_hp INTEGER NOT NULL DEFAULT 0,
        max_hp INTEGER NOT NULL DEFAULT 0,
        force_stat INTEGER NOT NULL DEFAULT 0,
        wealth_stat INTEGER NOT NULL DEFAULT 0,
        cunning_stat INTEGER NOT NULL DEFAULT 0,
        magic_stat TEXT NOT NULL DEFAULT 'None',
        treasure_stat INTEGER NOT NULL DEFAULT 0,
        is_visible INTEGER NOT NULL DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )''',
    'move_proposals': '''CREATE TABLE IF NOT EXISTS move_proposals (
        id INTEGER PRIMARY KEY,
        token_id INTEGER NOT NULL UNIQUE,
        original_x INTEGER NOT NULL,
        original_y INTEGER NOT NULL,
        proposed_x INTEGER NOT NULL,
        proposed_y INTEGER NOT NULL,
        proposed_by_session TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )''',
    'movable_factions': '''CREATE TABLE IF NOT EXISTS movable_factions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        faction_name TEXT NOT NULL UNIQUE,
        is_movable INTEGER NOT NULL DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )''',
    # Highest id ever issued per collection; survives deletion of that row
    'counters': '''CREATE TABLE IF NOT EXISTS counters (
        collection TEXT PRIMARY KEY,
        high_water INTEGER NOT NULL DEFAULT 0
    )''',
}

COLUMNS = {
    'tokens': ('id', 'x', 'y', 'name', 'faction', 'hp', 'max_hp', 'current_hp', 'attack', 'counterattack',
               'special', 'notes', 'color', 'playerid', 'visible_to_players', 'timestamp'),
    'faction_stats': ('id', 'faction_name', 'current_hp', 'max_hp', 'force_stat', 'wealth_stat', 'cunning_stat',
                      'magic_stat', 'treasure_stat', 'is_visible'),
    'move_proposals': ('id', 'token_id', 'original_x', 'original_y', 'proposed_x', 'proposed_y',
                       'proposed_by_session'),
    'movable_factions': ('faction_name', 'is_movable'),
}

BOOLEAN_COLUMNS = {'visible_to_players', 'is_visible', 'is_movable'}

# Tables whose rows carry an updated_at column
_TOUCHED_TABLES = {'faction_stats', 'movable_factions'}

# Collections whose ids are issued by the repository and must never be reused
COUNTED_COLLECTIONS = ('tokens', 'faction_stats', 'move_proposals')


class RecordStore:
    """Create/update/delete/list per collection over a SQLite file.

    Every call opens a short-lived connection. Errors propagate as sqlite3.Error;
    PersistenceMirror is the layer that logs and drops them.
    """

    def __init__(self, db_path):
        self.db_path = db_path

    def _get_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_schema(self):
        directory = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(directory, exist_ok=True)
        conn = self._get_db()
        try:
            for ddl in SCHEMA.values():
                conn.execute(ddl)
            conn.commit()
        finally:
            conn.close()
        logging.info(f"Record store ready: {self.db_path}")

    def _columns(self, collection, record):
        if collection not in COLUMNS:
            raise ValueError(f"Unknown collection: {collection}")
        return [c for c in COLUMNS[collection] if c in record]

    def _match_clause(self, collection, match):
        columns = self._columns(collection, match)
        if len(columns) != len(match):
            raise ValueError(f"Unknown match column for {collection}: {sorted(match)}")
        return ' AND '.join(f"{c} = ?" for c in columns), [match[c] for c in columns]

    def _raise_high_water(self, conn, collection, record):
        if collection not in COUNTED_COLLECTIONS or not isinstance(record.get('id'), int):
            return
        conn.execute("INSERT INTO counters (collection, high_water) VALUES (?, ?) "
                     "ON CONFLICT(collection) DO UPDATE SET high_water = MAX(high_water, excluded.high_water)",
                     (collection, record['id']))

    def high_water_marks(self):
        """Highest id ever written per counted collection."""
        conn = self._get_db()
        try:
            rows = conn.execute("SELECT collection, high_water FROM counters").fetchall()
            return {row['collection']: row['high_water'] for row in rows}
        finally:
            conn.close()

    def insert(self, collection, record):
        columns = self._columns(collection, record)
        placeholders = ', '.join('?' for _ in columns)
        conn = self._get_db()
        try:
            conn.execute(f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
                         [record[c] for c in columns])
            self._raise_high_water(conn, collection, record)
            conn.commit()
        finally:
            conn.close()

    def update(self, collection, match, fields):
        """Update rows matching every key in `match`. Returns the number of rows changed."""
        columns = self._columns(collection, fields)
        if not columns:
            return 0
        assignments = ', '.join(f"{c} = ?" for c in columns)
        if collection in _TOUCHED_TABLES:
            assignments += ", updated_at = CURRENT_TIMESTAMP"
        where, params = self._match_clause(collection, match)
        conn = self._get_db()
        try:
            cursor = conn.execute(f"UPDATE {collection} SET {assignments} WHERE {where}",
                                  [fields[c] for c in columns] + params)
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def upsert(self, collection, record, key):
        """Insert a row, or update the existing row with the same `key` column."""
        columns = self._columns(collection, record)
        placeholders = ', '.join('?' for _ in columns)
        updates = ', '.join(f"{c} = excluded.{c}" for c in columns if c != key)
        if collection in _TOUCHED_TABLES:
            updates += ", updated_at = CURRENT_TIMESTAMP"
        conn = self._get_db()
        try:
            conn.execute(f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders}) "
                         f"ON CONFLICT({key}) DO UPDATE SET {updates}",
                         [record[c] for c in columns])
            self._raise_high_water(conn, collection, record)
            conn.commit()
        finally:
            conn.close()

    def delete(self, collection, match=None):
        """Delete rows matching `match`, or every row when match is None. Returns rows deleted."""
        conn = self._get_db()
        try:
            if match:
                where, params = self._match_clause(collection, match)
                cursor = conn.execute(f"DELETE FROM {collection} WHERE {where}", params)
            else:
                self._columns(collection, {})
                cursor = conn.execute(f"DELETE FROM {collection}")
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def replace_all(self, collection, records):
        """Replace a collection's contents in one transaction."""
        conn = self._get_db()
        try:
            self._columns(collection, {})
            conn.execute(f"DELETE FROM {collection}")
            for record in records:
                columns = self._columns(collection, record)
                placeholders = ', '.join('?' for _ in columns)
                conn.execute(f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
                             [record[c] for c in columns])
            conn.commit()
        finally:
            conn.close()

    def list(self, collection):
        columns = self._columns(collection, dict.fromkeys(COLUMNS.get(collection, ())))
        conn = self._get_db()
        try:
            rows = conn.execute(f"SELECT {', '.join(columns)} FROM {collection} ORDER BY rowid").fetchall()
            result = []
            for row in rows:
                record = dict(row)
                for column in BOOLEAN_COLUMNS.intersection(record):
                    if record[column] is not None:
                        record[column] = bool(record[column])
                result.append(record)
            return result
        finally:
            conn.close()


class PersistenceMirror:
    """Runs record store writes on a single background worker.

    Writes are applied in submission order. A failed write is logged and dropped;
    nothing is retried and the caller never sees the outcome.
    """

    def __init__(self, store):
        self.store = store
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='record-store')
        self._pending = []
        self._lock = threading.Lock()

    def submit(self, operation, collection, *args):
        future = self._executor.submit(self._run, operation, collection, *args)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def _run(self, operation, collection, *args):
        try:
            getattr(self.store, operation)(collection, *args)
            logging.debug(f"Persisted {operation} on {collection}")
        except Exception as e:
            logging.error(f"Persistence failure ({operation} on {collection}): {e}", exc_info=True)

    def insert(self, collection, record):
        return self.submit('insert', collection, record)

    def update(self, collection, match, fields):
        return self.submit('update', collection, match, fields)

    def upsert(self, collection, record, key):
        return self.submit('upsert', collection, record, key)

    def delete(self, collection, match=None):
        return self.submit('delete', collection, match)

    def replace_all(self, collection, records):
        return self.submit('replace_all', collection, records)

    def flush(self, timeout=None):
        """Block until every write submitted so far has finished."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.result(timeout=timeout)

    def shutdown(self):
        self._executor.shutdown(wait=True)


class NullMirror:
    """Stand-in used when persistence is disabled."""

    def submit(self, operation, collection, *args):
        return None

    def insert(self, collection, record):
        return None

    def update(self, collection, match, fields):
        return None

    def upsert(self, collection, record, key):
        return None

    def delete(self, collection, match=None):
        return None

    def replace_all(self, collection, records):
        return None

    def flush(self, timeout=None):
        pass

    def shutdown(self):
        pass


def load_into(store, repository):
    """Seed the repository from the store. Any failure leaves the repository empty."""
    try:
        store.init_schema()
        repository.load(
            tokens=store.list('tokens'),
            factions=store.list('faction_stats'),
            proposals=store.list('move_proposals'),
            movable_factions=store.list('movable_factions'),
            high_water=store.high_water_marks(),
        )
        return True
    except Exception as e:
        logging.error(f"Could not load state from record store, starting fresh: {e}", exc_info=True)
        repository.load()
        return False
