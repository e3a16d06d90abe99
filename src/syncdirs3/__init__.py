"""
sync-dir-s3 -- push a directory to an object-storage bucket.

Only files whose content changed since the last sync are uploaded.
Storage credentials stay on disk encrypted under a password only
the user knows.
"""

import os

__version__ = "0.2.0"

SYNC_HOME = os.path.join("~", ".sync-dir-s3")
