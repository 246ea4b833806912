import pytest

from factories import make_graph, make_session


@pytest.fixture
def session():
    return make_session()


@pytest.fixture
def graph():
    return make_graph()
