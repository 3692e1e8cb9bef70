# map_relay/sessions.py
# Per-connection session state and the registry of live connections

import logging
import threading

from map_relay import config


class Session:
    """Runtime state for one socket connection."""

    def __init__(self, sid):
        self.sid = sid
        self.authenticated = False
        self.role = None
        # Set once the DM secret has been presented on this connection
        self.dm_verified = False

    def __repr__(self):
        return f"Session(sid={self.sid!r}, authenticated={self.authenticated}, role={self.role!r})"


def authenticate(session, role, credential, dm_password):
    """Apply an authenticate action to a session. Returns (success, message)."""
    if role == config.ROLE_DM:
        if credential is not None and credential == dm_password:
            session.authenticated = True
            session.role = config.ROLE_DM
            session.dm_verified = True
            return True, None
        return False, "Invalid DM password"
    if role == config.ROLE_PLAYER:
        session.authenticated = True
        session.role = config.ROLE_PLAYER
        return True, None
    return False, f"Unknown role: {role}"


def set_role(session, role):
    """Switch the working role of an authenticated session. Returns (success, message)."""
    if not session.authenticated:
        return False, "Not authenticated"
    if role not in config.ROLES:
        return False, f"Unknown role: {role}"
    if role == config.ROLE_DM and not session.dm_verified:
        return False, "DM role requires the DM password"
    session.role = role
    return True, None


class SessionRegistry:
    """Live sessions keyed by socket sid."""

    def __init__(self):
        self._sessions = {}
        self._lock = threading.Lock()

    def add(self, sid):
        with self._lock:
            session = Session(sid)
            self._sessions[sid] = session
        logging.debug(f"Session registered: {sid}")
        return session

    def get(self, sid):
        with self._lock:
            return self._sessions.get(sid)

    def remove(self, sid):
        with self._lock:
            session = self._sessions.pop(sid, None)
        if session:
            logging.debug(f"Session removed: {sid}")
        return session

    def authenticated(self):
        with self._lock:
            return [s for s in self._sessions.values() if s.authenticated]

    def __len__(self):
        with self._lock:
            return len(self._sessions)
