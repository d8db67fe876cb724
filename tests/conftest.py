import pytest

from hookhttp.cookies import default_cookie_jar
from hookhttp.middleware import reset_global_registry


@pytest.fixture(autouse=True)
def _clean_process_state():
    reset_global_registry()
    default_cookie_jar().clear()
    yield
    reset_global_registry()
    default_cookie_jar().clear()
