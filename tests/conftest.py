import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Configure the environment before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="sitecache_test_")
os.environ.setdefault("SITECACHE_STATE_DIR", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("KV_BACKEND", "memory")
os.environ.setdefault("USE_MEMORY_REMOTE", "true")
os.environ.setdefault("RUN_REPAIR_ON_START", "true")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from sitecache.service.remote import MemoryRemoteStore  # noqa: E402
from sitecache.service.runtime import CacheSession, reset_runtime_for_tests  # noqa: E402
from sitecache.storage.kv import MemoryKeyValueStore  # noqa: E402

COMPANY = "c0000000000000000000000a"
SITE_A = "a0000000000000000000000a"
SITE_B = "b0000000000000000000000b"


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def remote():
    return MemoryRemoteStore()


@pytest.fixture
def token(remote):
    return remote.auth.issue_token("site-engineer")


@pytest.fixture
def make_session(kv, remote, token):
    """Build a session over the shared kv/remote with ``site`` active."""

    def _make(site=SITE_A, company=COMPANY, *, authenticated=True, run_repair=True):
        if company is not None:
            kv.set("vini_active_company_id", company)
        if site is not None:
            kv.set("vini_active_site", site)
        provider = (lambda: token) if authenticated else (lambda: None)
        return CacheSession(kv, remote, provider, run_repair=run_repair)

    return _make


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
