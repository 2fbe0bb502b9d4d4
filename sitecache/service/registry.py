from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from sitecache.service.errors import UnknownCollectionError

LEGACY_PREFIX = "vini_"

DEFAULT_UNITS = ("bags", "kg", "tons", "liters", "nos", "cft", "sqft")
DEFAULT_MATERIAL_TYPES = ("Concrete", "Steel", "Brick", "Sand", "Other")


class ScopeKind(str, Enum):
    """Which tenant identifier qualifies a collection."""

    GLOBAL = "global"
    COMPANY = "company"
    SITE = "site"


@dataclass(frozen=True)
class ListFilter:
    """Keep remote records whose ``field`` equals (or, negated, differs from) ``value``."""

    field: str
    value: Any
    negate: bool = False

    def accepts(self, raw: Mapping[str, Any]) -> bool:
        matched = raw.get(self.field) == self.value
        return not matched if self.negate else matched


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    entity: str
    scope: ScopeKind = ScopeKind.SITE
    resource: Optional[str] = None
    list_params: Mapping[str, str] = field(default_factory=dict)
    list_filter: Optional[ListFilter] = None
    create_defaults: Mapping[str, Any] = field(default_factory=dict)
    migratable: bool = False
    local_only: bool = False
    settings_field: Optional[str] = None
    default: Tuple[Any, ...] = ()
    settings_links: Tuple[Tuple[str, str], ...] = ()
    company_fallback: bool = False
    prepend_on_create: bool = False
    # List as GET /<resource>/<siteId> rather than ?siteId=
    site_in_path: bool = False

    @property
    def legacy_key(self) -> str:
        return f"{LEGACY_PREFIX}{self.name}"

    @property
    def remote_backed(self) -> bool:
        return self.resource is not None

    @property
    def is_name_list(self) -> bool:
        return self.settings_field is not None

    @property
    def persist_locally(self) -> bool:
        return self.local_only or self.is_name_list

    def accepts(self, raw: Any) -> bool:
        if not isinstance(raw, dict):
            return False
        return self.list_filter is None or self.list_filter.accepts(raw)


def _site(name: str, entity: str, resource: str, **kwargs: Any) -> CollectionSpec:
    return CollectionSpec(name=name, entity=entity, resource=resource, **kwargs)


def _name_list(name: str, entity: str, settings_field: str, **kwargs: Any) -> CollectionSpec:
    return CollectionSpec(name=name, entity=entity, settings_field=settings_field, **kwargs)


DEFAULT_COLLECTIONS: Tuple[CollectionSpec, ...] = (
    CollectionSpec(name="companies", entity="company", scope=ScopeKind.GLOBAL, resource="companies"),
    CollectionSpec(name="sites", entity="site", scope=ScopeKind.COMPANY, resource="sites"),
    _site("users", "user", "auth/users", company_fallback=True),
    _site(
        "transactions",
        "transaction",
        "transactions",
        prepend_on_create=True,
        settings_links=(("category", "custom_categories"), ("partyName", "saved_parties")),
    ),
    _site("dprs", "dpr", "dpr", prepend_on_create=True, site_in_path=True),
    _site("attendance", "attendance", "attendance", prepend_on_create=True,
          site_in_path=True),
    _site(
        "materials",
        "material",
        "materials",
        migratable=True,
        site_in_path=True,
        settings_links=(("name", "saved_material_names"), ("unit", "saved_units")),
    ),
    _site("contacts", "contact", "contacts", prepend_on_create=True, site_in_path=True),
    _site("inventory", "inventory_item", "inventory", site_in_path=True),
    _site("bills", "bill", "bills"),
    _site("messages", "message", "chat"),
    _site("documents", "document", "documents", list_params={"category": "general"},
          create_defaults={"category": "general"}),
    _site("drawings", "drawing", "documents", list_params={"category": "drawing"},
          create_defaults={"category": "drawing"}, migratable=True),
    _site("concrete_tests", "concrete_test", "reports",
          list_filter=ListFilter("type", "concrete"),
          create_defaults={"type": "concrete"}, migratable=True),
    _site("steel_tests", "steel_test", "reports",
          list_filter=ListFilter("type", "steel"),
          create_defaults={"type": "steel"}, migratable=True),
    _site("brick_tests", "brick_test", "reports",
          list_filter=ListFilter("type", "brick"),
          create_defaults={"type": "brick"}, migratable=True),
    _site("checklists", "checklist", "checklists",
          list_filter=ListFilter("type", "Template", negate=True),
          migratable=True, prepend_on_create=True, site_in_path=True),
    _site("checklist_templates", "checklist_template", "checklists",
          list_filter=ListFilter("type", "Template"),
          create_defaults={"type": "Template"}, site_in_path=True),
    _site("project_tasks", "project_task", "project-tasks", migratable=True,
          prepend_on_create=True, site_in_path=True),
    _site("estimations", "estimation", "estimations", migratable=True,
          prepend_on_create=True, site_in_path=True),
    _site("custom_shapes", "custom_shape", "custom-shapes", site_in_path=True),
    _site("manpower", "manpower", "manpower/resources",
          settings_links=(("trade", "saved_trades"),)),
    _site("manpower_attendance", "manpower_attendance", "manpower/attendance"),
    _site("manpower_payments", "manpower_payment", "manpower/payments"),
    _name_list("saved_trades", "saved_trade", "trades"),
    _name_list("saved_material_names", "saved_material_name", "materialNames"),
    _name_list("saved_bill_items", "saved_bill_item", "billItems"),
    _name_list("saved_units", "saved_unit", "units", default=DEFAULT_UNITS),
    _name_list("saved_material_types", "saved_material_type", "materialTypes",
               default=DEFAULT_MATERIAL_TYPES),
    _name_list("custom_categories", "custom_category", "customCategories"),
    _name_list("saved_parties", "saved_party", "parties"),
    _name_list("saved_suppliers", "saved_supplier", "suppliers"),
    CollectionSpec(name="site_images", entity="site_image", local_only=True),
    CollectionSpec(name="saved_contractors", entity="saved_contractor", local_only=True),
)

# Free-text reference lists inspected by the startup repair pass
REPAIRED_NAME_LISTS = ("saved_parties", "saved_suppliers", "custom_categories")
# Transaction fields recovered to plain strings by the repair pass
REPAIRED_TRANSACTION_FIELDS = ("category", "partyName")


class CollectionRegistry:
    """Lookup of collection specs by name and by entity name."""

    def __init__(self, specs: Tuple[CollectionSpec, ...] = DEFAULT_COLLECTIONS) -> None:
        self._specs: Dict[str, CollectionSpec] = {}
        self._by_entity: Dict[str, CollectionSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"duplicate collection {spec.name}")
            if spec.entity in self._by_entity:
                raise ValueError(f"duplicate entity {spec.entity}")
            for _, target in spec.settings_links:
                if target not in {s.name for s in specs if s.is_name_list}:
                    raise ValueError(f"{spec.name} links to unknown name list {target}")
            self._specs[spec.name] = spec
            self._by_entity[spec.entity] = spec

    def __iter__(self) -> Iterator[CollectionSpec]:
        return iter(self._specs.values())

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def names(self) -> List[str]:
        return list(self._specs)

    def get(self, name: str) -> CollectionSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownCollectionError(
                f"unknown collection {name}", detail={"collection": name}
            ) from None

    def by_entity(self, entity: str) -> CollectionSpec:
        try:
            return self._by_entity[entity]
        except KeyError:
            raise UnknownCollectionError(
                f"unknown entity {entity}", detail={"entity": entity}
            ) from None

    def with_scope(self, scope: ScopeKind) -> List[CollectionSpec]:
        return [spec for spec in self._specs.values() if spec.scope == scope]

    def site_remote(self) -> List[CollectionSpec]:
        """Site-scoped collections fetched one-per-collection from the remote store."""
        return [
            spec
            for spec in self._specs.values()
            if spec.scope == ScopeKind.SITE and spec.remote_backed
        ]

    def name_lists(self) -> List[CollectionSpec]:
        return [spec for spec in self._specs.values() if spec.is_name_list]

    def migratable(self) -> List[CollectionSpec]:
        return [spec for spec in self._specs.values() if spec.migratable]
