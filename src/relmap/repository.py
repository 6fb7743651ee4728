"""Repository: identity map, lazy relations and graph-aware persistence.

The Repository mediates between the plain records of its backends and live
object graphs.  It guarantees one live instance per (model, index), installs
placeholders on relation properties and resolves them on first use, and
writes instance graphs back in dependency order.

Architecture::

    ┌──────────────────────────────────────────────────────────────────────┐
    │                              Repository                              │
    │                                                                      │
    │   configs:  model name → ModelConfig                                 │
    │   backends: identifier → Backend        junctions: name → ModelConfig│
    │   entries:  (model, index) → IdentityEntry                           │
    │   tracked:  id(instance)   → IdentityEntry   (persisted and new)     │
    │                                                                      │
    │   get / one / all / convert / create       → instances               │
    │   load_association / load_associations     → relations               │
    │   save / delete / reload / reload_all      → persistence             │
    │   diff / export / validate                 → inspection              │
    └──────────────────────────────────────────────────────────────────────┘

Entry states::

    new ──────────────────────────┐
    retrieving → retrieved → saving → saved
                      └──────── deleting → (entry removed)

Instances are tracked weakly.  An entry whose instance was garbage collected
keeps its last-known data, so a later lookup rebuilds the instance without
another backend call.

Usage:
    >>> backend = MemoryBackend()
    >>> backend.add_model(ModelConfig("Customer", properties={"id": "id", "name": "name"}, id=["id"]),
    ...                   rows=[{"id": 1, "name": "James Bond"}])
    >>> repository = Repository()
    >>> repository.register_backend(backend)
    >>> repository.get("Customer", 1).name
    'James Bond'

Tags:
    repository, identity-map, orm, relations, relmap
"""

from __future__ import annotations

import copy
import weakref
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from relmap.collection import Collection, RepositoryCollection
from relmap.config import BelongsTo, HasMany, ModelConfig
from relmap.errors import (
    AmbiguousResultError,
    ConfigError,
    DuplicateIndexError,
    IndexChangedError,
    IndexMismatchError,
    NoResultError,
    NotBoundError,
    NotPersistedError,
    PendingChangesError,
    UnknownBackendError,
    UnknownModelError,
)
from relmap.junction import Junction, unwrap
from relmap.logging import get_logger
from relmap.placeholders import BelongsToPlaceholder, HasManyPlaceholder, is_placeholder
from relmap.property_path import PropertyPath
from relmap.protocols import Backend
from relmap.record import Record, make_record_class
from relmap.settings import RelmapSettings

logger = get_logger(__name__)

NULL_INDEX = "__NULL__"


class EntryState(str, Enum):
    """Lifecycle state of an identity entry."""

    NEW = "new"
    RETRIEVING = "retrieving"
    RETRIEVED = "retrieved"
    SAVING = "saving"
    SAVED = "saved"
    DELETING = "deleting"


@dataclass(eq=False)
class IdentityEntry:
    """What the Repository knows about one instance.

    Attributes:
        model: Model name
        index: Identity-map key, ``None`` while the instance is new
        state: Lifecycle state
        data: Last-known backend record
        references: Snapshot of each loaded hasMany collection
        junctions: Snapshot of the junction rows per many-to-many property,
            keyed by the index of the far instance
    """

    model: str
    index: str | None
    state: EntryState
    data: dict[str, Any] | None = None
    references: dict[str, list[Any]] = field(default_factory=dict)
    junctions: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    _ref: weakref.ref[Any] | None = field(default=None, repr=False)
    _finalizer: weakref.finalize | None = field(default=None, repr=False)

    @property
    def instance(self) -> Any:
        """The live instance, or None when it was never built or collected."""
        return self._ref() if self._ref is not None else None


def format_index(values: list[Any]) -> str | None:
    """Identity-map key for id *values*; None when every part is None."""
    if all(value is None for value in values):
        return None
    return "+".join(NULL_INDEX if value is None else str(value) for value in values)


def _trigger(instance: Any, event: str, **kwargs: Any) -> None:
    if callable(getattr(type(instance), "trigger", None)):
        instance.trigger(event, **kwargs)


class Repository:
    """Maps backend records onto live instances and back.

    Parameters:
        settings: Behaviour defaults; ``RelmapSettings()`` when omitted.
    """

    def __init__(self, settings: RelmapSettings | None = None) -> None:
        self.settings = settings or RelmapSettings()
        self._configs: dict[str, ModelConfig] = {}
        self._backends: dict[str, Backend] = {}
        self._junctions: dict[str, ModelConfig] = {}
        self._entries: dict[tuple[str, str], IdentityEntry] = {}
        self._tracked: dict[int, IdentityEntry] = {}

    def __repr__(self) -> str:
        return f"<Repository models={sorted(self._configs)} entries={len(self._entries)}>"

    # =====================================================================
    # Registration
    # =====================================================================

    def register_backend(self, backend: Backend) -> None:
        """Register *backend* with every model and junction it serves."""
        if backend.identifier in self._backends:
            raise ConfigError(f'Backend "{backend.identifier}" is already registered')
        self._backends[backend.identifier] = backend
        for config in backend.configs.values():
            self.register_model(config, backend)
        for name, junction in backend.junctions.items():
            if name in self._junctions:
                raise ConfigError(f'Junction "{name}" is already registered')
            junction.backend = backend.identifier
            self._junctions[name] = junction
        logger.info(
            "repository.backend_registered",
            backend=backend.identifier,
            models=sorted(backend.configs),
            junctions=sorted(backend.junctions),
        )

    def register_model(self, config: ModelConfig, backend: Backend | str | None = None) -> ModelConfig:
        """Validate and register a single model.

        A model without ``class_`` gets a generated :class:`Record` subclass.
        """
        if config.name in self._configs:
            raise ConfigError(f'Model "{config.name}" is already configured').with_context(model=config.name)
        identifier = backend if isinstance(backend, str) or backend is None else backend.identifier
        identifier = identifier or config.backend
        if identifier not in self._backends:
            raise UnknownBackendError(str(identifier), config.name)
        config.validate()
        if config.class_ is None:
            config.class_ = make_record_class(config)
        config.backend = identifier
        self._configs[config.name] = config
        logger.debug("repository.model_registered", model=config.name, backend=identifier)
        return config

    def is_configured(self, model: str) -> bool:
        return model in self._configs

    def get_config(self, model: str) -> ModelConfig:
        try:
            return self._configs[model]
        except KeyError:
            raise UnknownModelError(model) from None

    def _backend(self, config: ModelConfig) -> Backend:
        try:
            return self._backends[str(config.backend)]
        except KeyError:
            raise UnknownBackendError(str(config.backend), config.name) from None

    def _junction(self, name: str) -> ModelConfig:
        try:
            return self._junctions[name]
        except KeyError:
            raise ConfigError(f'Unknown junction: "{name}"') from None

    # =====================================================================
    # Identity
    # =====================================================================

    def resolve_index(self, model: str, id: Any) -> str | None:
        """Identity-map key for *id* (a value, a list of values or a ``{column: value}`` mapping)."""
        config = self.get_config(model)
        return format_index(self._id_values(config, id))

    def _id_values(self, config: ModelConfig, id: Any) -> list[Any]:
        if not config.id:
            raise ConfigError(f'Model "{config.name}" has no id columns').with_context(model=config.name)
        if isinstance(id, Mapping):
            return [id.get(column) for column in config.id]
        if isinstance(id, (list, tuple)):
            if len(id) != len(config.id):
                raise ConfigError(
                    f'"{config.name}" is identified by {len(config.id)} columns, got {len(id)} values'
                ).with_context(model=config.name)
            return list(id)
        if len(config.id) != 1:
            raise ConfigError(
                f'"{config.name}" is identified by {", ".join(config.id)}; pass a list or a mapping'
            ).with_context(model=config.name)
        return [id]

    def _id_record(self, config: ModelConfig, id: Any) -> dict[str, Any]:
        return dict(zip(config.id, self._id_values(config, id)))

    def _index_of_data(self, config: ModelConfig, data: Mapping[str, Any]) -> str | None:
        return format_index([data.get(column) for column in config.id])

    def _index_of(self, config: ModelConfig, instance: Any) -> str | None:
        return format_index([PropertyPath.get(instance, config.properties[column]) for column in config.id])

    def _track(self, entry: IdentityEntry, instance: Any) -> None:
        key = id(instance)
        entry._ref = weakref.ref(instance)
        entry._finalizer = weakref.finalize(instance, self._tracked.pop, key, None)
        self._tracked[key] = entry

    def _untrack(self, entry: IdentityEntry) -> None:
        instance = entry.instance
        if entry._finalizer is not None:
            entry._finalizer.detach()
        if instance is not None:
            self._tracked.pop(id(instance), None)
        entry._ref = None

    def entry_of(self, instance: Any) -> IdentityEntry | None:
        """The identity entry of a live instance, if it is bound to this Repository."""
        instance = unwrap(instance)
        entry = self._tracked.get(id(instance))
        if entry is None or entry.instance is not instance:
            return None
        return entry

    def _bound_entry(self, config: ModelConfig, instance: Any) -> IdentityEntry:
        entry = self.entry_of(instance)
        if entry is None or entry.model != config.name:
            raise NotBoundError(config.name)
        if entry.state is not EntryState.NEW:
            current = self._index_of(config, instance)
            if current != entry.index:
                raise IndexChangedError(config.name, entry.index, current)
        return entry

    def _instantiate(self, config: ModelConfig) -> Any:
        cls = config.class_
        if isinstance(cls, type) and issubclass(cls, Record):
            return cls()
        return cls.__new__(cls)

    # =====================================================================
    # Retrieval
    # =====================================================================

    def get(self, model: str, id: Any, *, preload: bool | int = False) -> Any:
        """The instance of *model* identified by *id*; fetched on a miss."""
        config = self.get_config(model)
        index = format_index(self._id_values(config, id))
        if index is None:
            raise ConfigError(f'Unable to get a "{model}" without an id').with_context(model=model)
        key = (model, index)
        entry = self._entries.get(key)
        if entry is not None:
            instance = entry.instance
            if instance is None and entry.data is not None:
                instance = self._materialize(config, entry)
            if instance is not None:
                if preload:
                    self.load_associations(model, instance, preload=preload)
                return instance

        instance = self._instantiate(config)
        entry = IdentityEntry(model, index, EntryState.RETRIEVING)
        self._entries[key] = entry
        self._track(entry, instance)
        try:
            logger.debug("repository.get", model=model, index=index)
            data = self._backend(config).get(self._id_record(config, id), config.backend_config)
            retrieved = self._index_of_data(config, data)
            if retrieved != index:
                raise IndexMismatchError(model, index, str(retrieved))
            entry.data = dict(data)
            self._populate(config, instance, data)
        except Exception:
            self._untrack(entry)
            self._entries.pop(key, None)
            raise
        entry.state = EntryState.RETRIEVED
        if preload:
            self.load_associations(model, instance, preload=preload)
        return instance

    def convert(
        self,
        model: str,
        data: Mapping[str, Any],
        *,
        preload: bool | int = False,
        junction_fields: dict[str, Any] | None = None,
    ) -> Any:
        """The instance for an already fetched backend record.

        A live instance for the same index wins over *data*.  With
        ``junction_fields`` the instance is wrapped in a :class:`Junction`.
        """
        config = self.get_config(model)
        index = self._index_of_data(config, data)
        if index is None:
            raise ConfigError(f'The "{model}" data has no id').with_context(model=model)
        key = (model, index)
        entry = self._entries.get(key)
        instance = entry.instance if entry is not None else None
        if instance is None:
            if entry is None:
                entry = IdentityEntry(model, index, EntryState.RETRIEVED)
                self._entries[key] = entry
            entry.data = dict(data)
            instance = self._materialize(config, entry)
        if preload:
            self.load_associations(model, instance, preload=preload)
        if junction_fields is not None:
            return Junction(instance, junction_fields, strict=self.settings.strict_junctions)
        return instance

    def _materialize(self, config: ModelConfig, entry: IdentityEntry) -> Any:
        instance = self._instantiate(config)
        self._track(entry, instance)
        entry.state = EntryState.RETRIEVED
        entry.references.clear()
        entry.junctions.clear()
        self._populate(config, instance, entry.data or {})
        return instance

    def one(
        self,
        model: str,
        conditions: Any,
        *,
        allow_none: bool = False,
        preload: bool | int = False,
    ) -> Any:
        """The single instance matching *conditions*.

        Raises:
            AmbiguousResultError: More than one instance matches
            NoResultError: Nothing matches and ``allow_none`` is not set
        """
        found = self.all(model, conditions, preload=preload).take(2).to_list()
        if len(found) > 1:
            raise AmbiguousResultError(model, conditions)
        if not found:
            if allow_none:
                return None
            raise NoResultError(model, conditions)
        return found[0]

    def all(self, model: str, conditions: Any = None, *, preload: bool | int = False) -> Collection:
        """Lazy collection of every instance of *model*, optionally filtered."""
        config = self.get_config(model)
        rows = self._backend(config).all(config.backend_config)
        collection: Collection = RepositoryCollection(rows, model, self, preload)
        if conditions:
            collection = collection.where(conditions)
        return collection

    def create(self, model: str, values: Mapping[str, Any] | None = None) -> Any:
        """A new, unsaved instance with the configured defaults applied."""
        config = self.get_config(model)
        instance = self._instantiate(config)
        for path in config.properties.values():
            PropertyPath.set(instance, path, copy.deepcopy(config.defaults.get(path)))
        for prop, relation in config.belongs_to.items():
            PropertyPath.set(instance, prop, self._belongs_to_value(config, instance, prop, relation, relation.default))
        for prop in config.has_many:
            PropertyPath.set(instance, prop, [])
        for path, value in (values or {}).items():
            PropertyPath.set(instance, path, value)
        self._track(IdentityEntry(model, None, EntryState.NEW), instance)
        _trigger(instance, "create")
        return instance

    # =====================================================================
    # Mapping
    # =====================================================================

    def _populate(self, config: ModelConfig, instance: Any, data: Mapping[str, Any]) -> None:
        for column, path in config.properties.items():
            if column not in data:
                raise ConfigError(
                    f'Column "{column}" is missing in the "{config.name}" data'
                ).with_context(model=config.name, property=path)
            PropertyPath.set(instance, path, data[column])
        for prop, relation in config.belongs_to.items():
            if relation.convert is not None:
                nested = data.get(relation.convert)
                PropertyPath.set(instance, prop, None if nested is None else self.convert(relation.model, nested))
            else:
                value = self._belongs_to_value(config, instance, prop, relation, data.get(relation.reference))
                PropertyPath.set(instance, prop, value)
        for prop in config.has_many:
            PropertyPath.set(instance, prop, HasManyPlaceholder(self, config.name, instance, prop))
        _trigger(instance, "load")

    def _belongs_to_value(
        self, config: ModelConfig, instance: Any, prop: str, relation: BelongsTo, key: Any
    ) -> Any:
        if key is None:
            return None
        if relation.use_index:
            entry = self._entries.get((relation.model, str(key)))
            live = entry.instance if entry is not None else None
            if live is not None:
                return live
        return BelongsToPlaceholder(self, config.name, instance, prop, relation.model, {relation.id: key})

    def _to_data(self, config: ModelConfig, instance: Any) -> dict[str, Any]:
        data = {column: PropertyPath.get(instance, path) for column, path in config.properties.items()}
        for prop, relation in config.belongs_to.items():
            target = PropertyPath.get(instance, prop)
            if relation.convert is not None:
                data[relation.convert] = (
                    None if target is None else self._to_data(self.get_config(relation.model), unwrap(target))
                )
            elif isinstance(target, BelongsToPlaceholder):
                data.setdefault(relation.reference, target.peek(relation.id))
            else:
                data[relation.reference] = None if target is None else PropertyPath.get(unwrap(target), relation.id)
        return data

    def _default_data(self, config: ModelConfig) -> dict[str, Any]:
        data = {column: config.defaults.get(path) for column, path in config.properties.items()}
        for relation in config.belongs_to.values():
            if relation.reference is not None:
                data[relation.reference] = relation.default
        return data

    # =====================================================================
    # Relations
    # =====================================================================

    def load_association(self, model: str, instance: Any, property: str, *, preload: bool | int = False) -> Any:
        """Load relation *property* and store it on *instance* (replacing a placeholder)."""
        config = self.get_config(model)
        instance = unwrap(instance)
        if property in config.belongs_to:
            relation = config.belongs_to[property]
            value = self._load_belongs_to(config, instance, property, relation)
            target_model = relation.model
        elif property in config.has_many:
            value = self._load_has_many(config, instance, property, config.has_many[property])
            target_model = config.has_many[property].model
        else:
            raise ConfigError(f'"{property}" is not a relation of "{model}"').with_context(
                model=model, property=property
            )
        PropertyPath.set(instance, property, value)
        if preload:
            targets = value if isinstance(value, list) else [value]
            for target in targets:
                if target is not None:
                    self.load_associations(target_model, unwrap(target), preload=preload)
        return value

    def _load_belongs_to(self, config: ModelConfig, instance: Any, prop: str, relation: BelongsTo) -> Any:
        current = PropertyPath.get(instance, prop)
        if relation.convert is not None:
            return current
        if isinstance(current, BelongsToPlaceholder):
            key = current.peek(relation.id)
        else:
            entry = self.entry_of(instance)
            if entry is not None and entry.data is not None:
                key = entry.data.get(relation.reference)
            else:
                key = relation.default
        if key is None:
            return None
        logger.debug("repository.load_belongs_to", model=config.name, property=prop, key=key)
        if relation.use_index:
            return self.get(relation.model, key)
        return self.one(relation.model, {relation.id: key})

    def _owner_id(self, config: ModelConfig, instance: Any) -> Any:
        return PropertyPath.get(instance, config.properties[config.id[0]])

    def _load_has_many(self, config: ModelConfig, instance: Any, prop: str, relation: HasMany) -> list[Any]:
        entry = self.entry_of(instance)
        if entry is None or entry.state is EntryState.NEW:
            return []
        owner_id = self._owner_id(config, instance)
        logger.debug("repository.load_has_many", model=config.name, property=prop, id=owner_id)
        if relation.many_to_many:
            rows = self._junction_rows(relation, owner_id)
            entry.junctions[prop] = {str(row[relation.id]): dict(row) for row in rows}
            items = self._junction_targets(relation, rows)
        else:
            target = self.get_config(relation.model)
            related = self._backend(target).related(target.backend_config, relation.reference, owner_id)
            collection: Collection = RepositoryCollection(related, relation.model, self)
            if relation.conditions:
                collection = collection.where(relation.conditions)
            items = collection.to_list()
        entry.references[prop] = list(items)
        return items

    def _junction_rows(self, relation: HasMany, owner_id: Any) -> list[dict[str, Any]]:
        junction = self._junction(str(relation.through))
        backend = self._backend(junction)
        return backend.related(junction.backend_config, relation.reference, owner_id).to_list()

    def _junction_targets(self, relation: HasMany, rows: list[dict[str, Any]]) -> list[Any]:
        if not rows:
            return []
        far = self.get_config(relation.model)
        id_path = far.properties[far.id[0]]
        conditions = {f"{id_path} IN": [row[relation.id] for row in rows], **relation.conditions}
        found = {str(PropertyPath.get(item, id_path)): item for item in self.all(relation.model, conditions)}
        items = []
        for row in rows:
            item = found.get(str(row[relation.id]))
            if item is None:
                continue
            if relation.fields:
                item = Junction(
                    item,
                    {name: row.get(column) for column, name in relation.fields.items()},
                    strict=self.settings.strict_junctions,
                )
            items.append(item)
        return items

    def load_associations(
        self,
        model: str,
        instance: Any,
        *,
        preload: bool | int = True,
        _loading: set[int] | None = None,
    ) -> Any:
        """Resolve every relation that still holds a placeholder.

        ``preload`` is the depth: ``True`` (or 1) loads the relations of
        *instance*, 2 also those of the loaded instances, and so on.
        """
        depth = 1 if preload is True else int(preload)
        instance = unwrap(instance)
        loading = set() if _loading is None else _loading
        if depth <= 0 or id(instance) in loading:
            return instance
        loading.add(id(instance))
        config = self.get_config(model)
        relations: dict[str, BelongsTo | HasMany] = {**config.belongs_to, **config.has_many}
        for prop, relation in relations.items():
            value = PropertyPath.get(instance, prop)
            if is_placeholder(value):
                value = self.load_association(model, instance, prop)
            if depth > 1 and value is not None:
                for target in value if isinstance(value, list) else [value]:
                    self.load_associations(relation.model, target, preload=depth - 1, _loading=loading)
        return instance

    # =====================================================================
    # Persistence
    # =====================================================================

    def save(
        self,
        model: str,
        instance: Any,
        *,
        ignore_relations: bool = False,
        keep_missing_related_instances: bool | None = None,
    ) -> Any:
        """Write *instance* and, unless ``ignore_relations``, its loaded relations.

        belongsTo targets are written before the instance, hasMany entries
        after it.  Each instance is written at most once per call.
        """
        keep = (
            self.settings.keep_missing_related_instances
            if keep_missing_related_instances is None
            else keep_missing_related_instances
        )
        return self._save(model, instance, ignore_relations, keep, set())

    def _save(self, model: str, instance: Any, ignore_relations: bool, keep: bool, saving: set[int]) -> Any:
        instance = unwrap(instance)
        if is_placeholder(instance) or id(instance) in saving:
            return instance
        config = self.get_config(model)
        entry = self._bound_entry(config, instance)
        if entry.state is EntryState.SAVING:
            return instance
        saving.add(id(instance))
        previous = entry.state
        entry.state = EntryState.SAVING
        try:
            _trigger(instance, "saving")
            if not ignore_relations:
                for prop, relation in config.belongs_to.items():
                    target = PropertyPath.get(instance, prop)
                    if target is not None and not is_placeholder(target) and relation.convert is None:
                        self._save(relation.model, target, False, keep, saving)
            self._write(config, entry, instance, previous)
            if not ignore_relations:
                for prop, relation in config.has_many.items():
                    value = PropertyPath.get(instance, prop)
                    if is_placeholder(value):
                        continue
                    if relation.many_to_many:
                        self._save_many_to_many(config, entry, instance, prop, relation, value, previous, keep, saving)
                    else:
                        self._save_one_to_many(config, entry, instance, prop, relation, value, keep, saving)
        except Exception:
            # Once added, the row exists; a retry updates it instead of adding it again
            if previous is EntryState.NEW and entry.data is not None:
                entry.state = EntryState.SAVED
            else:
                entry.state = previous
            logger.warning("repository.save_failed", model=model, index=entry.index, state=entry.state.value)
            raise
        entry.state = EntryState.SAVED
        _trigger(instance, "saved")
        return instance

    def _write(self, config: ModelConfig, entry: IdentityEntry, instance: Any, previous: EntryState) -> None:
        backend = self._backend(config)
        data = self._to_data(config, instance)
        if previous is EntryState.NEW:
            self._claim_index(config, entry, self._index_of_data(config, data))
            logger.debug("repository.add", model=config.name)
            row = backend.add(data, config.backend_config)
            for column, path in config.properties.items():
                if column in row and row[column] != data[column]:
                    PropertyPath.set(instance, path, row[column])
            entry.data = {**data, **row}
            if not config.id:
                # Without id columns the instance stays in the created set
                return
            index = self._index_of_data(config, entry.data)
            if index is None:
                raise ConfigError(f'The backend assigned no id to the new "{config.name}"').with_context(model=config.name)
            self._claim_index(config, entry, index)
            entry.index = index
            self._entries[(config.name, index)] = entry
            return
        changes = self._changes(entry.data or {}, data)
        if not changes:
            logger.debug("repository.save_skipped", model=config.name, index=entry.index)
            return
        if not config.id:
            raise ConfigError(
                f'"{config.name}" has no id columns, its saved rows can\'t be updated'
            ).with_context(model=config.name)
        logger.debug("repository.update", model=config.name, index=entry.index, columns=sorted(changes))
        row = backend.update(data, entry.data or {}, config.backend_config)
        entry.data = {**data, **row}

    def _claim_index(self, config: ModelConfig, entry: IdentityEntry, index: str | None) -> None:
        if index is None or not config.id:
            return
        bound = self._entries.get((config.name, index))
        if bound is not None and bound is not entry:
            raise DuplicateIndexError(config.name, index)

    def _save_one_to_many(
        self,
        config: ModelConfig,
        entry: IdentityEntry,
        instance: Any,
        prop: str,
        relation: HasMany,
        value: Any,
        keep: bool,
        saving: set[int],
    ) -> None:
        items = list(value)
        children = [unwrap(item) for item in items]
        target = self.get_config(relation.model)
        owner_id = self._owner_id(config, instance)
        for child in children:
            if relation.belongs_to is not None:
                PropertyPath.set(child, relation.belongs_to, instance)
            elif relation.reference in target.properties:
                PropertyPath.set(child, target.properties[relation.reference], owner_id)
            self._save(relation.model, child, False, keep, saving)
        if not keep:
            current = {id(child) for child in children}
            for old in entry.references.get(prop, []):
                old = unwrap(old)
                old_entry = self.entry_of(old)
                if id(old) not in current and old_entry is not None and old_entry.state is not EntryState.NEW:
                    self.delete(relation.model, old)
        entry.references[prop] = items

    def _save_many_to_many(
        self,
        config: ModelConfig,
        entry: IdentityEntry,
        instance: Any,
        prop: str,
        relation: HasMany,
        value: Any,
        previous: EntryState,
        keep: bool,
        saving: set[int],
    ) -> None:
        items = list(value)
        for item in items:
            self._save(relation.model, item, False, keep, saving)
        junction = self._junction(str(relation.through))
        backend = self._backend(junction)
        far = self.get_config(relation.model)
        owner_id = self._owner_id(config, instance)

        old_rows = entry.junctions.get(prop)
        if old_rows is None:
            old_rows = (
                {}
                if previous is EntryState.NEW
                else {str(row[relation.id]): dict(row) for row in self._junction_rows(relation, owner_id)}
            )
        old_items = {
            str(self._owner_id(far, unwrap(item))): unwrap(item)
            for item in entry.references.get(prop, [])
            if self.entry_of(item) is not None
        }

        rows: dict[str, dict[str, Any]] = {}
        targets: dict[str, Any] = {}
        for item in items:
            target = unwrap(item)
            far_id = self._owner_id(far, target)
            row = {relation.reference: owner_id, relation.id: far_id}
            if isinstance(item, Junction):
                for column, name in relation.fields.items():
                    row[column] = item.fields.get(name)
            key = str(far_id)
            old = old_rows.get(key)
            if old is None:
                logger.debug("repository.junction_add", junction=junction.name, row=row)
                rows[key] = {**row, **backend.add(row, junction.backend_config)}
                self._link_back(relation, target, instance, rows[key], add=True)
            else:
                merged = {**old, **row}
                if merged != old:
                    logger.debug("repository.junction_update", junction=junction.name, row=merged)
                    backend.update(merged, old, junction.backend_config)
                rows[key] = merged
            targets[key] = target
        for key, old in old_rows.items():
            if key in rows:
                continue
            logger.debug("repository.junction_delete", junction=junction.name, row=old)
            backend.delete(old, junction.backend_config)
            if key in old_items:
                self._link_back(relation, old_items[key], instance, old, add=False)
        entry.junctions[prop] = rows
        entry.references[prop] = items

    def _link_back(self, relation: HasMany, target: Any, owner: Any, row: dict[str, Any], add: bool) -> None:
        """Keep the reciprocal collection of a many-to-many edge in step."""
        if relation.back is None:
            return
        far = self.get_config(relation.model)
        back = far.has_many.get(relation.back)
        far_entry = self.entry_of(target)
        if back is None or far_entry is None:
            return
        collection = PropertyPath.get(target, relation.back)
        if is_placeholder(collection):
            return
        key = str(row[relation.reference])
        snapshot = far_entry.junctions.setdefault(relation.back, {})
        members = [unwrap(item) for item in collection]
        if add:
            snapshot[key] = dict(row)
            if owner not in members:
                linked = owner
                if back.fields:
                    linked = Junction(
                        owner,
                        {name: row.get(column) for column, name in back.fields.items()},
                        strict=self.settings.strict_junctions,
                    )
                collection.append(linked)
        else:
            snapshot.pop(key, None)
            for position, member in enumerate(members):
                if member is owner:
                    del collection[position]
                    break
        far_entry.references[relation.back] = list(collection)

    def delete(self, model: str, target: Any) -> None:
        """Delete an instance (or the row identified by an id) and tombstone the instance."""
        config = self.get_config(model)
        instance, entry = self._locate(config, target, "delete")
        data = entry.data if entry is not None and entry.data is not None else self._id_record(config, target)
        previous = entry.state if entry is not None else None
        if entry is not None:
            entry.state = EntryState.DELETING
        try:
            if instance is not None:
                _trigger(instance, "deleting")
            logger.debug("repository.delete", model=model, index=entry.index if entry else None)
            self._backend(config).delete(data, config.backend_config)
        except Exception:
            if entry is not None and previous is not None:
                entry.state = previous
                logger.warning("repository.delete_failed", model=model, index=entry.index)
            raise
        if entry is not None:
            self._entries.pop((model, str(entry.index)), None)
            self._untrack(entry)
        if instance is not None:
            _trigger(instance, "deleted")
            self._tombstone(instance)

    def _locate(self, config: ModelConfig, target: Any, action: str) -> tuple[Any, IdentityEntry | None]:
        target = unwrap(target)
        if isinstance(target, config.class_):
            entry = self.entry_of(target)
            if entry is None:
                raise NotBoundError(config.name)
            if entry.state is EntryState.NEW:
                raise NotPersistedError(config.name, action)
            return target, entry
        entry = self._entries.get((config.name, str(format_index(self._id_values(config, target)))))
        return (entry.instance if entry is not None else None), entry

    @staticmethod
    def _tombstone(instance: Any) -> None:
        if isinstance(instance, Record):
            instance._tombstone()
            return
        for name in [name for name in vars(instance) if not name.startswith("_")]:
            delattr(instance, name)

    def reload(self, model: str, target: Any, *, discard_changes: bool = False) -> Any:
        """Re-fetch the backend data of an instance (or of the instance tracked under an id).

        Raises:
            PendingChangesError: The instance has unsaved changes and
                ``discard_changes`` is not set
        """
        config = self.get_config(model)
        instance, entry = self._locate(config, target, "reload")
        if entry is None:
            return self.get(model, target)
        if instance is not None and not discard_changes:
            changes = self.diff(model, instance)
            if changes:
                raise PendingChangesError(model, entry.index, changes)
        id = {column: (entry.data or {}).get(column) for column in config.id}
        logger.debug("repository.reload", model=model, index=entry.index)
        data = self._backend(config).get(id, config.backend_config)
        retrieved = self._index_of_data(config, data)
        if retrieved != entry.index:
            raise IndexMismatchError(model, str(entry.index), str(retrieved))
        entry.data = dict(data)
        if instance is None:
            return self._materialize(config, entry)
        entry.references.clear()
        entry.junctions.clear()
        self._populate(config, instance, data)
        entry.state = EntryState.RETRIEVED
        return instance

    def reload_all(self, model: str, *, discard_changes: bool = False) -> list[Any]:
        """Reload every live instance of *model*."""
        self.get_config(model)
        instances = [
            entry.instance
            for (name, _), entry in list(self._entries.items())
            if name == model and entry.instance is not None
        ]
        return [self.reload(model, instance, discard_changes=discard_changes) for instance in instances]

    # =====================================================================
    # Inspection
    # =====================================================================

    def diff(self, model: str, instance: Any) -> dict[str, dict[str, Any]]:
        """Changed columns of *instance* as ``{column: {"previous": ..., "next": ...}}``.

        New instances are compared against the model defaults and report
        only ``next``.
        """
        config = self.get_config(model)
        entry = self.entry_of(instance)
        if entry is None:
            raise NotBoundError(model)
        data = self._to_data(config, unwrap(instance))
        if entry.state is EntryState.NEW:
            defaults = self._default_data(config)
            return {column: {"next": value} for column, value in data.items() if defaults.get(column) != value}
        return self._changes(entry.data or {}, data)

    @staticmethod
    def _changes(old: Mapping[str, Any], new: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
        return {
            column: {"previous": old.get(column), "next": value}
            for column, value in new.items()
            if column not in old or old[column] != value
        }

    def export(self, model: str, instance: Any, depth: int = 0) -> dict[str, Any]:
        """Plain dict of the mapped properties; relations are included while ``depth > 0``."""
        config = self.get_config(model)
        target = unwrap(instance)
        result = {path: PropertyPath.get(target, path) for path in config.properties.values()}
        if depth > 0:
            for prop, relation in config.belongs_to.items():
                related = PropertyPath.get(target, prop)
                if is_placeholder(related):
                    related = related.resolve()
                result[prop] = None if related is None else self.export(relation.model, related, depth - 1)
            for prop, relation in config.has_many.items():
                result[prop] = [self.export(relation.model, item, depth - 1) for item in PropertyPath.get(target, prop)]
        if isinstance(instance, Junction):
            result.update(instance.fields)
        return result

    def validate(self) -> list[str]:
        """Report tracked instances whose id no longer matches their identity-map key."""
        problems = []
        for (model, index), entry in list(self._entries.items()):
            instance = entry.instance
            if instance is None or entry.state is EntryState.RETRIEVING:
                continue
            current = self._index_of(self.get_config(model), instance)
            if current != index:
                message = f'Index of "{model}" changed from {{{index}}} to {{{current}}}'
                logger.warning("repository.index_changed", model=model, index=index, current=current)
                problems.append(message)
        return problems


__all__ = ["EntryState", "IdentityEntry", "Repository", "format_index"]
