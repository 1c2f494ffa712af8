"""
Shared test configuration.

The environment is pinned before ``portal`` is imported anywhere, so the
app under test uses a throwaway SQLite file and no AI backend.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="portal-tests-")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'portal_test.db')}"
os.environ["AI_BASE_URL"] = ""
os.environ["AI_API_STYLE"] = ""
os.environ["CLIENT_CACHE_URL"] = "sqlite+aiosqlite://"
