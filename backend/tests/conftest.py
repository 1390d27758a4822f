import os

# Set default env vars for tests before any app imports
os.environ.setdefault("JOB_STORE_BACKEND", "memory")
os.environ.setdefault("GENERATION_PROVIDER", "mock")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("POSTGRES_DSN", "sqlite:///./test_paper2video.db")
os.environ.setdefault("GENERATION_MAX_RETRIES", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.api.deps import get_dispatcher  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.db.session import init_db, make_engine  # noqa: E402
from app.main import create_app  # noqa: E402
from app.services.job_store import InMemoryJobStore, SqlJobStore  # noqa: E402
from app.services.progress import ProgressReporter  # noqa: E402


@pytest.fixture
def memory_store():
    return InMemoryJobStore()


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    init_db(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlJobStore(session_factory)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def reporter(store):
    return ProgressReporter(store)


@pytest.fixture
def local_storage(tmp_path, monkeypatch):
    root = tmp_path / "artifacts"
    monkeypatch.setattr(settings, "storage_backend", "local")
    monkeypatch.setattr(settings, "local_storage_dir", str(root))
    return root


@pytest.fixture
def dispatched():
    return []


@pytest.fixture
def client(memory_store, dispatched):
    app = create_app(memory_store)
    app.dependency_overrides[get_dispatcher] = lambda: (lambda job, store: dispatched.append(job.id))
    with TestClient(app) as c:
        yield c
