import os
import tempfile

# Keep the default SQLite file created by database.py out of the working tree.
os.environ.setdefault("OBLIGATIONS_DATA_DIR", tempfile.mkdtemp(prefix="obligations-"))
