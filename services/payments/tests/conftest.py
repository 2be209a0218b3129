# The simulator runs as a standalone app (``uvicorn main:app`` from its own
# directory); make its modules importable and point it at a throwaway SQLite DB.
import os
import sys
import tempfile
from pathlib import Path

import pytest

SERVICE_DIR = Path(__file__).resolve().parent.parent
if str(SERVICE_DIR) not in sys.path:
    sys.path.insert(0, str(SERVICE_DIR))

os.environ.setdefault("DATABASE_URL", f"sqlite:///{tempfile.mkdtemp()}/gateway.sqlite3")
os.environ.setdefault("GATEWAY_KEY_SECRET", "sim-secret")


@pytest.fixture()
def client():
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as c:
        yield c
