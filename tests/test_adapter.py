"""Tests for convergent.adapter."""

from __future__ import annotations

import pytest

from convergent.adapter import (
    ResourceAdapter,
    _adapter_registry,
    build_adapters,
    get_schema,
    registered_kinds,
    resource,
)
from convergent.resources.api_cache import KIND
from convergent.schema import Attribute, AttrType, Schema

WIDGET_SCHEMA = Schema(
    "widget",
    (
        Attribute("name", AttrType.STRING, required=True),
        Attribute("color", AttrType.STRING, immutable=True),
        Attribute("size", AttrType.INT),
    ),
    identity="name",
)


class Widget(ResourceAdapter[dict]):
    schema = WIDGET_SCHEMA

    def create(self, desired):
        self.transport[desired["name"]] = dict(desired)
        return desired["name"]

    def read(self, ident):
        values = self.transport.get(ident)
        return None if values is None else self.schema.validate(values)

    def update(self, ident, changes):
        self._check_mutable(changes)
        self.transport[ident].update(changes)

    def delete(self, ident):
        self.transport.pop(ident, None)


@pytest.fixture(autouse=True)
def _clean_registry():
    """Restore the adapter registry after each test."""
    saved = _adapter_registry.copy()
    yield
    _adapter_registry.clear()
    _adapter_registry.update(saved)


class TestResourceDecorator:
    def test_registers_class(self):
        cls = resource("widget")(Widget)
        assert _adapter_registry["widget"] is cls
        assert cls.kind == "widget"

    def test_returns_class_unchanged(self):
        assert resource("widget")(Widget) is Widget

    def test_get_schema(self):
        resource("widget")(Widget)
        assert get_schema("widget") is WIDGET_SCHEMA

    def test_registered_kinds_sorted(self):
        resource("widget")(Widget)
        assert registered_kinds() == sorted([KIND, "widget"])


class TestBuildAdapters:
    def test_shares_transport(self):
        resource("widget")(Widget)
        transport: dict = {}
        adapters = build_adapters(transport, ["widget"])
        assert adapters["widget"].transport is transport

    def test_all_registered_by_default(self):
        assert KIND in build_adapters(object())

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown resource kind"):
            build_adapters({}, ["nope"])


class TestResourceAdapter:
    def test_import_state_reads(self):
        resource("widget")(Widget)
        adapter = Widget({"w": {"name": "w", "size": 2}})
        attrs = adapter.import_state("w")
        assert attrs["size"] == 2

    def test_check_mutable(self):
        resource("widget")(Widget)
        adapter = Widget({"w": {"name": "w"}})
        with pytest.raises(ValueError, match="color"):
            adapter.update("w", {"color": "red"})
        adapter.update("w", {"size": 3})
        assert adapter.transport["w"]["size"] == 3
