# map_relay/config.py
# Paths, environment settings, logging

import os
import logging

from dotenv import load_dotenv

APP_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

load_dotenv(os.path.join(APP_ROOT, '.env'))

# --- Logging ---
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format='%(asctime)s - %(levelname)s - %(message)s')


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in ('0', 'false', 'no', 'off', '')


# --- Roles ---
ROLE_DM = 'dm'
ROLE_PLAYER = 'player'
ROLES = (ROLE_DM, ROLE_PLAYER)

# --- DM secret ---
DM_PASSWORD = os.environ.get('DM_PASSWORD')
if not DM_PASSWORD:
    logging.warning("DM_PASSWORD not set, using insecure development default.")
    DM_PASSWORD = 'dev-dm-password'

# --- Record store ---
RECORD_STORE_PATH = os.environ.get('RECORD_STORE_PATH') or os.path.join(APP_ROOT, 'map_relay.db')
PERSISTENCE_ENABLED = _env_flag('PERSISTENCE_ENABLED', True)

# --- Server ---
HOST = os.environ.get('HOST', '0.0.0.0')
PORT = int(os.environ.get('PORT', 3000))

# --- Map image (diagnostics only) ---
MAP_IMAGE_PATH = os.environ.get('MAP_IMAGE_PATH') or os.path.join(APP_ROOT, 'public', 'map.png')

# --- Entity defaults ---
DEFAULT_TOKEN_COLOR = '#FF0000'
DEFAULT_MAGIC_STAT = 'None'


def as_dict():
    """Settings copied into app.config by create_app()."""
    return {
        'DM_PASSWORD': DM_PASSWORD,
        'RECORD_STORE_PATH': RECORD_STORE_PATH,
        'PERSISTENCE_ENABLED': PERSISTENCE_ENABLED,
        'HOST': HOST,
        'PORT': PORT,
        'MAP_IMAGE_PATH': MAP_IMAGE_PATH,
    }
