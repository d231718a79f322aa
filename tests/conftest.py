import pathlib
import site

import pytest
from dbexec.adapters.registry import BindTypeRegistry

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def restore_bind_registry():
    """Undo registry extensions made by a test to ensure test isolation."""
    registry = BindTypeRegistry.get_instance()
    handlers = dict(registry._handlers)
    object_classes = dict(registry._object_classes)
    yield registry
    registry._handlers = handlers
    registry._object_classes = object_classes


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.sqlite',
]
