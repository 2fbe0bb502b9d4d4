import pytest

from sitecache.service.errors import UnknownCollectionError
from sitecache.service.registry import (
    DEFAULT_UNITS,
    CollectionRegistry,
    CollectionSpec,
    ListFilter,
    ScopeKind,
)


def test_registry_lookup_by_name_and_entity():
    registry = CollectionRegistry()

    assert registry.get("materials").entity == "material"
    assert registry.by_entity("concrete_test").name == "concrete_tests"
    assert "saved_units" in registry
    assert "widgets" not in registry


def test_unknown_collection_raises():
    registry = CollectionRegistry()
    with pytest.raises(UnknownCollectionError):
        registry.get("widgets")
    with pytest.raises(UnknownCollectionError):
        registry.by_entity("widget")


def test_scope_partitions():
    registry = CollectionRegistry()

    assert [s.name for s in registry.with_scope(ScopeKind.GLOBAL)] == ["companies"]
    assert [s.name for s in registry.with_scope(ScopeKind.COMPANY)] == ["sites"]
    site_remote = {s.name for s in registry.site_remote()}
    assert "materials" in site_remote
    assert "saved_units" not in site_remote
    assert "site_images" not in site_remote


def test_migratable_collections():
    names = {s.name for s in CollectionRegistry().migratable()}
    assert names == {
        "materials",
        "drawings",
        "concrete_tests",
        "steel_tests",
        "brick_tests",
        "checklists",
        "project_tasks",
        "estimations",
    }


def test_name_list_defaults_and_keys():
    spec = CollectionRegistry().get("saved_units")
    assert spec.is_name_list
    assert spec.persist_locally
    assert spec.default == DEFAULT_UNITS
    assert spec.legacy_key == "vini_saved_units"


def test_report_filters_split_shared_resource():
    registry = CollectionRegistry()
    concrete = registry.get("concrete_tests")
    steel = registry.get("steel_tests")

    assert concrete.resource == steel.resource == "reports"
    assert concrete.accepts({"type": "concrete"})
    assert not concrete.accepts({"type": "steel"})
    assert not concrete.accepts("not a record")


def test_negated_filter_excludes_templates():
    checklists = CollectionRegistry().get("checklists")
    assert checklists.accepts({"type": "Daily"})
    assert not checklists.accepts({"type": "Template"})
    assert ListFilter("type", "x", negate=True).accepts({})


def test_duplicate_names_rejected():
    spec = CollectionSpec(name="a", entity="a", resource="a")
    with pytest.raises(ValueError):
        CollectionRegistry((spec, CollectionSpec(name="a", entity="b", resource="b")))


def test_links_must_target_name_lists():
    spec = CollectionSpec(
        name="a", entity="a", resource="a", settings_links=(("name", "missing"),)
    )
    with pytest.raises(ValueError):
        CollectionRegistry((spec,))
