"""Unit tests for the handler registry."""

from __future__ import annotations

import threading

import pytest

from stepflow.workflow.errors import HandlerNotFoundError
from stepflow.workflow.registry import Registry


def test_register_and_get(scripted) -> None:
    handler = scripted()
    registry = Registry()

    registry.register("build", handler)

    assert registry.get("build") is handler
    assert registry.has("build")
    assert "build" in registry
    assert len(registry) == 1


def test_get_unknown_handler(scripted) -> None:
    registry = Registry({"build": scripted()})

    with pytest.raises(HandlerNotFoundError) as excinfo:
        registry.get("deploy")

    assert isinstance(excinfo.value, KeyError)
    assert excinfo.value.name == "deploy"
    assert "deploy" in str(excinfo.value)
    assert not registry.has("deploy")


@pytest.mark.parametrize("name", ["", None])
def test_register_rejects_empty_name(scripted, name) -> None:
    with pytest.raises(ValueError):
        Registry().register(name, scripted())


def test_register_rejects_none_handler() -> None:
    with pytest.raises(ValueError):
        Registry().register("build", None)  # type: ignore[arg-type]


def test_register_rejects_duplicates(scripted) -> None:
    registry = Registry({"build": scripted()})

    with pytest.raises(ValueError, match="already registered"):
        registry.register("build", scripted())


def test_frozen_registry_is_read_only(scripted) -> None:
    registry = Registry({"build": scripted()}).freeze()

    assert registry.frozen
    with pytest.raises(RuntimeError):
        registry.register("review", scripted())
    assert registry.names() == ["build"]


def test_names_are_sorted(scripted) -> None:
    registry = Registry({name: scripted() for name in ("review", "build", "create_pr")})

    assert registry.names() == ["build", "create_pr", "review"]


def test_concurrent_lookups(scripted) -> None:
    handlers = {f"step{i}": scripted() for i in range(20)}
    registry = Registry(handlers).freeze()
    mismatches: list[str] = []

    def reader() -> None:
        for _ in range(200):
            for name, handler in handlers.items():
                if registry.get(name) is not handler:
                    mismatches.append(name)

    threads = [threading.Thread(target=reader) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert mismatches == []
