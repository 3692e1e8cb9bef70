# map_relay/broadcast.py
# Per-session delivery of state change events

import logging

from map_relay import visibility


class BroadcastRouter:
    """Decides, for every authenticated session, which event (if any) an update turns into.

    `emit` is called as emit(event, payload, sid) once per delivery.
    """

    def __init__(self, registry, emit):
        self.registry = registry
        self.emit = emit

    def to_all(self, event, payload):
        """Unfiltered delivery to every authenticated session."""
        sessions = self.registry.authenticated()
        for session in sessions:
            self.emit(event, payload, session.sid)
        logging.debug(f"Broadcast {event} to {len(sessions)} session(s)")

    def token_event(self, event, token, payload=None):
        """token:placed / token:moved: DMs always, players only while the token is visible."""
        if payload is None:
            payload = token
        delivered = 0
        for session in self.registry.authenticated():
            if visibility.can_see_token(session.role, token):
                self.emit(event, payload, session.sid)
                delivered += 1
        logging.debug(f"Broadcast {event} for token {token['id']} to {delivered} session(s)")

    def token_updated(self, previous, token):
        """token:updated, or token:removed for players when the token has just been hidden."""
        was_visible = previous is not None and visibility.token_visible_to_players(previous)
        for session in self.registry.authenticated():
            if visibility.can_see_token(session.role, token):
                self.emit('token:updated', token, session.sid)
            elif was_visible:
                self.emit('token:removed', {'id': token['id']}, session.sid)

    def faction_updated(self, previous, record):
        """faction_stats:updated, or faction_stats:deleted for players when the faction has just been hidden."""
        was_visible = previous is not None and visibility.faction_visible_to_players(previous)
        for session in self.registry.authenticated():
            if visibility.can_see_faction(session.role, record):
                self.emit('faction_stats:updated', record, session.sid)
            elif was_visible:
                self.emit('faction_stats:deleted', {'faction_name': record['faction_name']}, session.sid)

    def push_snapshot(self, session, repository):
        """Send the full state, filtered for the session's role, to one session."""
        with repository.lock:
            tokens = visibility.visible_tokens(session.role, repository.tokens())
            factions = visibility.visible_factions(session.role, repository.faction_stats())
            proposals = repository.move_proposals()
            movable = repository.movable_factions()
        self.emit('tokens:load', tokens, session.sid)
        self.emit('faction_stats:load', factions, session.sid)
        self.emit('move_proposals:load', proposals, session.sid)
        self.emit('movable_factions:load', movable, session.sid)
        logging.info(f"Sent {session.role} snapshot to {session.sid}: {len(tokens)} token(s), {len(factions)} faction(s)")
