import pathlib
import site

import pytest
from dbmap.descriptor import clear_descriptor_cache

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def clear_caches():
    """Clear the descriptor cache before and after each test to ensure test isolation."""
    clear_descriptor_cache()
    yield
    clear_descriptor_cache()


pytest_plugins = [
    'tests.fixtures.records',
    'tests.fixtures.sqlite',
]
