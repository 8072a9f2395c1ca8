import pytest

from pinyx import _tracking, config, container, definition


@pytest.fixture(autouse=True)
def _isolate():
    """Every test starts with no definitions, no active container, no live containers, nothing queued."""
    definition._reset_registry()
    container.set_active(None)
    config.set_production(False)
    _tracking._reset()
    container._containers.clear()
    yield
    definition._reset_registry()
    container.set_active(None)
    config.set_production(False)
    _tracking._reset()
    container._containers.clear()


@pytest.fixture
def active_container():
    c = container.create_container()
    with c.activate():
        yield c


def increment(store, by=1):
    store.count += by
    return store.count


@pytest.fixture
def use_counter():
    return definition.define(
        "counter",
        state=lambda: {"count": 0, "name": "counter"},
        getters={
            "double": lambda store: store.count * 2,
            "quadruple": lambda store: store.double * 2,
        },
        actions={"increment": increment},
    )
