"""Tests for the layer store: creation, styling, ordering and deletion rules."""
import pytest

from geolayers.api.schemas.geo_schemas import LayerSource, SystemLayerDef
from geolayers.api.services.layer_store import (
    PALETTE,
    LayerDeletionRefused,
    LayerStore,
    layer_name_from_filename,
)

from conftest import make_point, make_polygon


def _store_with(*names):
    """Store with one imported layer per name, the last name on top"""
    store = LayerStore()
    for name in names:
        store.add_imported_layer([make_point(f"{name}-p")], f"{name}.csv")
    return store


def _system_def(layer_id="processes", name="Processos de Licenciamento", color="#3B82F6", count=1):
    return SystemLayerDef(
        id=layer_id,
        name=name,
        color=color,
        features=[make_point(f"{layer_id}-{i}") for i in range(count)],
    )


@pytest.mark.unit
class TestImportedLayers:

    def test_layer_name_from_filename(self):
        assert layer_name_from_filename("areas.geojson") == "areas"
        assert layer_name_from_filename("dados.2024.csv") == "dados.2024"
        assert layer_name_from_filename("sem_extensao") == "sem_extensao"

    def test_new_layer_defaults(self):
        store = LayerStore()
        layer = store.add_imported_layer([make_polygon("a"), make_polygon("b")], "areas.geojson")

        assert layer.name == "areas"
        assert layer.source == LayerSource.IMPORTED
        assert layer.visible is True
        assert layer.opacity == 1.0
        assert layer.feature_count == 2
        assert layer.color == PALETTE[0]
        assert layer.uploaded_at is not None
        assert all(f.layer_id == layer.id for f in layer.features)

    def test_new_layer_goes_on_top(self):
        store = _store_with("first", "second")
        assert [layer.name for layer in store.snapshot()] == ["second", "first"]

    def test_duplicate_feature_ids_are_made_unique(self):
        store = LayerStore()
        layer = store.add_imported_layer([make_point("x"), make_point("x"), make_point("x")], "pts.csv")
        assert [f.id for f in layer.features] == ["x", "x-2", "x-3"]

    def test_palette_exhaustion(self):
        store = LayerStore()
        count = len(PALETTE) + 5
        layers = [store.add_imported_layer([make_point()], f"l{i}.csv") for i in range(count)]

        colors = [layer.color for layer in layers]
        assert all(colors)
        assert len(set(colors[:len(PALETTE)])) == len(PALETTE)
        assert set(colors[len(PALETTE):]) <= set(PALETTE)

    def test_color_freed_by_deletion_is_reused(self):
        store = _store_with("a", "b", "c")
        b = store.snapshot()[1]
        store.delete_layer(b.id)

        layer = store.add_imported_layer([make_point()], "d.csv")
        assert layer.color == b.color


@pytest.mark.unit
class TestStyling:

    def test_toggle_visibility(self):
        store = _store_with("a")
        layer_id = store.snapshot()[0].id

        assert store.toggle_visibility(layer_id).visible is False
        assert store.toggle_visibility(layer_id).visible is True

    def test_set_color_and_opacity(self):
        store = _store_with("a")
        layer_id = store.snapshot()[0].id

        store.set_color(layer_id, "#FF0000")
        store.set_opacity(layer_id, 0.5)

        layer = store.get(layer_id)
        assert layer.color == "#FF0000"
        assert layer.opacity == 0.5

    def test_opacity_is_clamped(self):
        store = _store_with("a")
        layer_id = store.snapshot()[0].id

        assert store.set_opacity(layer_id, 1.7).opacity == 1.0
        assert store.set_opacity(layer_id, -3).opacity == 0.0

    def test_unknown_id_is_a_no_op(self):
        store = _store_with("a")
        before = store.snapshot()
        calls = []
        store.subscribe(calls.append)

        assert store.toggle_visibility("missing") is None
        assert store.set_color("missing", "#000000") is None
        assert store.set_opacity("missing", 0.3) is None
        assert store.delete_layer("missing") is False
        assert store.snapshot() == before
        assert calls == []


@pytest.mark.unit
class TestDeletion:

    def test_delete_imported_layer(self):
        store = _store_with("a", "b")
        b_id = store.snapshot()[0].id

        assert store.delete_layer(b_id) is True
        assert [layer.name for layer in store.snapshot()] == ["a"]

    def test_system_layer_cannot_be_deleted(self):
        store = _store_with("a")
        store.replace_system_layers([_system_def()])
        before = store.snapshot()

        with pytest.raises(LayerDeletionRefused) as excinfo:
            store.delete_layer("processes")

        assert excinfo.value.layer.id == "processes"
        assert store.snapshot() == before


@pytest.mark.unit
class TestReorder:

    def test_move_down(self):
        store = _store_with("c", "b", "a")
        ids = {layer.name: layer.id for layer in store.snapshot()}

        assert store.reorder(ids["a"], ids["c"]) is True
        assert [layer.name for layer in store.snapshot()] == ["b", "c", "a"]

    def test_move_up(self):
        store = _store_with("c", "b", "a")
        ids = {layer.name: layer.id for layer in store.snapshot()}

        store.reorder(ids["c"], ids["a"])
        assert [layer.name for layer in store.snapshot()] == ["c", "a", "b"]

    def test_same_or_unknown_target(self):
        store = _store_with("b", "a")
        a_id = store.snapshot()[0].id
        before = store.snapshot()

        assert store.reorder(a_id, a_id) is False
        assert store.reorder(a_id, "missing") is False
        assert store.reorder("missing", a_id) is False
        assert store.snapshot() == before


@pytest.mark.unit
class TestSystemLayers:

    def test_added_below_imported_layers(self):
        store = _store_with("a")
        store.replace_system_layers([_system_def(), _system_def("companies", "Empresas Cadastradas", "#8B5CF6")])

        layers = store.snapshot()
        assert [layer.id for layer in layers[1:]] == ["processes", "companies"]
        assert all(layer.source == LayerSource.SYSTEM for layer in layers[1:])
        assert layers[1].color == "#3B82F6"

    def test_refresh_keeps_position_and_styling(self):
        store = _store_with("a")
        store.replace_system_layers([_system_def()])
        store.set_color("processes", "#000000")
        store.toggle_visibility("processes")
        store.reorder("processes", store.snapshot()[0].id)

        store.replace_system_layers([_system_def(count=3)])

        layer = store.snapshot()[0]
        assert layer.id == "processes"
        assert layer.color == "#000000"
        assert layer.visible is False
        assert layer.feature_count == 3

    def test_missing_definition_removes_layer(self):
        store = _store_with("a")
        store.replace_system_layers([_system_def()])
        store.replace_system_layers([])

        assert [layer.source for layer in store.snapshot()] == [LayerSource.IMPORTED]

    def test_definition_without_color_uses_palette(self):
        store = LayerStore()
        store.replace_system_layers([_system_def(color=None)])
        assert store.get("processes").color == PALETTE[0]


@pytest.mark.unit
class TestChangeNotification:

    def test_listeners_receive_snapshot(self):
        store = LayerStore()
        snapshots = []
        store.subscribe(snapshots.append)

        layer = store.add_imported_layer([make_point()], "a.csv")
        store.toggle_visibility(layer.id)

        assert len(snapshots) == 2
        assert snapshots[-1][0].visible is False

    def test_unsubscribe(self):
        store = LayerStore()
        snapshots = []
        unsubscribe = store.subscribe(snapshots.append)
        unsubscribe()

        store.add_imported_layer([make_point()], "a.csv")
        assert snapshots == []

    def test_snapshot_is_immutable(self):
        store = _store_with("a")
        snapshot = store.snapshot()
        store.clear()
        assert len(snapshot) == 1
        assert len(store) == 0
