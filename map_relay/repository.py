# map_relay/repository.py
# Authoritative in-memory state: tokens, faction stats, move proposals, movable factions

import copy
import logging
import threading

from map_relay import models


class NotFound(Exception):
    """A referenced token, proposal or faction does not exist."""


def _next_id(records, high_water=None):
    ids = [r['id'] for r in records if isinstance(r.get('id'), int)]
    if isinstance(high_water, int):
        ids.append(high_water)
    return max(ids) + 1 if ids else 1


class StateRepository:
    """Owns all four collections. Every read returns copies; every mutation runs under `lock`.

    Callers that need a mutation and its broadcast to be atomic hold `lock` around both;
    it is reentrant so the repository methods can take it again.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._tokens = []
        self._factions = []
        self._proposals = []
        self._movable_factions = []
        self._next_token_id = 1
        self._next_faction_id = 1
        self._next_proposal_id = 1

    # --- Startup ---

    def load(self, tokens=None, factions=None, proposals=None, movable_factions=None, high_water=None):
        """Replace all collections with previously persisted rows and resume id counters.

        `high_water` maps collection name to the highest id ever issued, so ids of
        deleted records are not handed out again.
        """
        high_water = high_water or {}
        with self.lock:
            self._tokens = [models.normalize_loaded(t, models.TOKEN_FIELDS) for t in (tokens or [])]
            self._tokens.sort(key=lambda t: t.get('id') or 0)
            self._factions = [models.normalize_loaded(f, models.FACTION_FIELDS) for f in (factions or [])]
            self._proposals = []
            for proposal in proposals or []:
                proposal = models.normalize_loaded(proposal, models.PROPOSAL_FIELDS)
                # Keep the newest proposal per token if the store ever held more than one
                self._proposals = [p for p in self._proposals if p['token_id'] != proposal.get('token_id')]
                self._proposals.append(proposal)
            self._movable_factions = models.build_movable_factions(movable_factions or [])
            self._next_token_id = _next_id(self._tokens, high_water.get('tokens'))
            self._next_faction_id = _next_id(self._factions, high_water.get('faction_stats'))
            self._next_proposal_id = _next_id(self._proposals, high_water.get('move_proposals'))
            logging.info(f"Repository loaded: {len(self._tokens)} token(s), {len(self._factions)} faction(s), "
                         f"{len(self._proposals)} proposal(s), {len(self._movable_factions)} movable faction entries")

    # --- Reads ---

    def tokens(self):
        with self.lock:
            return copy.deepcopy(self._tokens)

    def faction_stats(self):
        with self.lock:
            return copy.deepcopy(self._factions)

    def move_proposals(self):
        with self.lock:
            return copy.deepcopy(self._proposals)

    def movable_factions(self):
        with self.lock:
            return copy.deepcopy(self._movable_factions)

    def get_token(self, token_id):
        with self.lock:
            token = self._find_token(token_id)
            return copy.deepcopy(token) if token else None

    def get_faction_stats(self, faction_name):
        with self.lock:
            record = self._find_faction(faction_name)
            return copy.deepcopy(record) if record else None

    def _find_token(self, token_id):
        token_id = models.to_int(token_id, None)
        for token in self._tokens:
            if token['id'] == token_id:
                return token
        return None

    def _find_faction(self, faction_name):
        for record in self._factions:
            if record['faction_name'] == faction_name:
                return record
        return None

    def _find_proposal(self, proposal_id):
        proposal_id = models.to_int(proposal_id, None)
        for proposal in self._proposals:
            if proposal['id'] == proposal_id:
                return proposal
        return None

    def _find_proposal_for_token(self, token_id):
        token_id = models.to_int(token_id, None)
        for proposal in self._proposals:
            if proposal['token_id'] == token_id:
                return proposal
        return None

    # --- Tokens ---

    def place_token(self, data, playerid=None):
        with self.lock:
            token = models.build_token(self._next_token_id, data or {}, playerid)
            self._next_token_id += 1
            self._tokens.append(token)
            return copy.deepcopy(token)

    def move_token(self, token_id, x, y):
        """Returns the moved token, or None if the id is unknown."""
        with self.lock:
            token = self._find_token(token_id)
            if token is None:
                return None
            token['x'] = models.to_int(x, token['x'])
            token['y'] = models.to_int(y, token['y'])
            return copy.deepcopy(token)

    def update_token(self, token_id, data):
        """Merge a partial update over a token. Returns the updated token, or None if the id is unknown."""
        with self.lock:
            token = self._find_token(token_id)
            if token is None:
                return None
            token.update(models.token_changes(token, data or {}))
            return copy.deepcopy(token)

    def remove_token(self, token_id):
        """Returns True if a token was removed. Unknown ids are not an error."""
        with self.lock:
            token_id = models.to_int(token_id, None)
            before = len(self._tokens)
            self._tokens = [t for t in self._tokens if t['id'] != token_id]
            return len(self._tokens) < before

    # --- Faction stats ---

    def upsert_faction_stats(self, data):
        """Create or merge the record keyed on faction_name."""
        faction_name = models.to_text(data.get('faction_name')).strip()
        if not faction_name:
            raise ValueError("faction_name is required")
        with self.lock:
            record = self._find_faction(faction_name)
            if record is None:
                record = models.build_faction_stats(self._next_faction_id, faction_name, data)
                self._next_faction_id += 1
                self._factions.append(record)
            else:
                record.update(models.faction_changes(record, data))
            return copy.deepcopy(record)

    def delete_faction_stats(self, faction_name):
        with self.lock:
            before = len(self._factions)
            self._factions = [f for f in self._factions if f['faction_name'] != faction_name]
            return len(self._factions) < before

    # --- Move proposals ---

    def create_move_proposal(self, token_id, original_x, original_y, proposed_x, proposed_y, session_id):
        """Create a proposal, superseding any live one for the same token.

        Returns (proposal, superseded) where superseded is the replaced proposal or None.
        """
        token_id = models.to_int(token_id, None)
        if token_id is None:
            raise ValueError("token_id is required")
        with self.lock:
            superseded = self._find_proposal_for_token(token_id)
            if superseded is not None:
                self._proposals.remove(superseded)
            proposal = models.build_move_proposal(self._next_proposal_id, token_id, original_x, original_y,
                                                  proposed_x, proposed_y, session_id)
            self._next_proposal_id += 1
            self._proposals.append(proposal)
            return copy.deepcopy(proposal), copy.deepcopy(superseded)

    def update_move_proposal(self, token_id, proposed_x, proposed_y):
        with self.lock:
            proposal = self._find_proposal_for_token(token_id)
            if proposal is None:
                raise NotFound(f"No move proposal for token {token_id}")
            proposal['proposed_x'] = models.to_int(proposed_x, proposal['proposed_x'])
            proposal['proposed_y'] = models.to_int(proposed_y, proposal['proposed_y'])
            return copy.deepcopy(proposal)

    def approve_move_proposal(self, proposal_id):
        """Apply a proposal to its token and drop it.

        Returns (proposal, token) where token is the moved token, or None if it no longer exists.
        """
        with self.lock:
            proposal = self._take_proposal(proposal_id)
            token = self._find_token(proposal['token_id'])
            if token is not None:
                token['x'] = proposal['proposed_x']
                token['y'] = proposal['proposed_y']
                token = copy.deepcopy(token)
            return proposal, token

    def reject_move_proposal(self, proposal_id):
        with self.lock:
            return self._take_proposal(proposal_id)

    def cancel_move_proposal(self, proposal_id):
        with self.lock:
            return self._take_proposal(proposal_id)

    def _take_proposal(self, proposal_id):
        proposal = self._find_proposal(proposal_id)
        if proposal is None:
            raise NotFound(f"Move proposal {proposal_id} not found")
        self._proposals.remove(proposal)
        return proposal

    def clear_all_proposals(self):
        with self.lock:
            count = len(self._proposals)
            self._proposals = []
            return count

    # --- Movable factions ---

    def replace_movable_factions_config(self, entries):
        with self.lock:
            self._movable_factions = models.build_movable_factions(entries)
            return copy.deepcopy(self._movable_factions)
