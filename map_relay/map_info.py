# map_relay/map_info.py
# Map image diagnostics (file size and pixel dimensions)

import os
import logging

from PIL import Image, UnidentifiedImageError


def describe_map_image(path):
    """Return size and dimensions of the map image at `path`, or None if there is no file."""
    if not path or not os.path.isfile(path):
        logging.warning(f"describe_map_image: map image not found: {path}")
        return None
    size_bytes = os.path.getsize(path)
    info = {
        'path': path,
        'size_bytes': size_bytes,
        'size_mb': round(size_bytes / 1024 / 1024, 1),
        'format': None,
        'width': None,
        'height': None,
        'oversized': False,
    }
    try:
        with Image.open(path) as image:
            info['format'] = image.format
            info['width'], info['height'] = image.size
    except Image.DecompressionBombError as e:
        info['oversized'] = True
        logging.warning(f"describe_map_image: {path} exceeds the Pillow pixel limit: {e}")
    except (UnidentifiedImageError, OSError) as e:
        logging.warning(f"describe_map_image: could not read image header for {path}: {e}")
    logging.info(f"Map image {path}: {info['size_mb']} MB, {info['width']}x{info['height']}")
    return info
