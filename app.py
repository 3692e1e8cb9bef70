# app.py
# Entry point for the map relay server

import sys
import json

from map_relay import config, create_app
from map_relay.map_info import describe_map_image


if __name__ == '__main__':
    if '--map-info' in sys.argv:
        info = describe_map_image(config.MAP_IMAGE_PATH)
        if info is None:
            print(f"No map image at {config.MAP_IMAGE_PATH}")
            sys.exit(1)
        print(json.dumps(info, indent=2))
        sys.exit(0)

    app = create_app()
    socketio = app.extensions['socketio']
    print("------------------------------------------")
    print(" Starting map relay server... ")
    print(f" Record store:   {app.config['RECORD_STORE_PATH'] if app.config['PERSISTENCE_ENABLED'] else 'disabled'}")
    print(f" Listening on:   http://{config.HOST}:{config.PORT}/")
    print("------------------------------------------")
    socketio.run(app, host=config.HOST, port=config.PORT, allow_unsafe_werkzeug=True)
