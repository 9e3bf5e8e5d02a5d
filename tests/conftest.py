import os
import tempfile

# Keep the module-level engine in database.py away from ./data during tests.
os.environ.setdefault("FINANCE_DATA_DIR", tempfile.mkdtemp(prefix="finance-tests-"))
os.environ.setdefault("FINANCE_DATABASE_URL", "sqlite:///:memory:")
