# map_relay/visibility.py
# Role-based filtering of tokens and faction stats

from map_relay import config


def token_visible_to_players(token):
    # Tokens are shown unless explicitly hidden
    return token.get('visible_to_players') is not False


def faction_visible_to_players(faction):
    # Factions stay secret until revealed
    return faction.get('is_visible') is True


def can_see_token(role, token):
    return role == config.ROLE_DM or token_visible_to_players(token)


def can_see_faction(role, faction):
    return role == config.ROLE_DM or faction_visible_to_players(faction)


def visible_tokens(role, tokens):
    """Tokens a viewer with the given role may see."""
    return [t for t in tokens if can_see_token(role, t)]


def visible_factions(role, factions):
    """Faction stats a viewer with the given role may see."""
    return [f for f in factions if can_see_faction(role, f)]
