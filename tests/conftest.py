import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("AI_DESIGNER_DB_URL", "sqlite:///./test_ai_designer.db")
os.environ.setdefault("OPENROUTER_API_KEY", "test-openrouter-key")
os.environ.setdefault("OPENROUTER_MODEL", "test/primary-model")
os.environ.setdefault("LLM_RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")

from sqlalchemy import delete  # noqa: E402

from ai_designer.db import SessionLocal, init_db  # noqa: E402
from ai_designer.models import Base  # noqa: E402


@pytest.fixture()
def db_session():
    init_db()
    session = SessionLocal()

    def _clear() -> None:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(delete(table))
        session.commit()

    _clear()
    try:
        yield session
    finally:
        session.rollback()
        _clear()
        session.close()
