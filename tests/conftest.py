import pytest

from chat_gateway.config import _clear_model_map_cache_for_tests
from chat_gateway.model_catalog import clear_catalog


@pytest.fixture(autouse=True)
def _isolate_model_state(monkeypatch):
    monkeypatch.delenv("MODEL_MAP_JSON", raising=False)
    monkeypatch.delenv("MODEL_CATALOG_JSON", raising=False)
    _clear_model_map_cache_for_tests()
    clear_catalog()
    yield
    _clear_model_map_cache_for_tests()
    clear_catalog()
