"""Model configuration: the static, per-model schema descriptor.

A :class:`ModelConfig` tells the Repository how backend rows map onto
instances:

* ``properties`` maps backend columns to instance property paths,
* ``id`` lists the columns that identify a row,
* ``belongs_to`` / ``has_many`` describe relations to other models,
* ``defaults`` holds the initial values for instances made by ``create()``,
* ``backend`` / ``backend_config`` select the backend and carry its
  backend-specific settings.

Usage::

    ModelConfig(
        "Order",
        properties={"id": "id", "product": "product"},
        id=["id"],
        belongs_to={"customer": BelongsTo("Customer", reference="customer_id")},
    )

Configs are validated once, when the Repository registers them.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

from relmap.errors import ConfigError, InvalidRelationError
from relmap.property_path import PropertyPath


@dataclass
class BelongsTo:
    """Many-to-one relation.

    Attributes:
        model: The related model, e.g. ``"Customer"``
        reference: Column holding the foreign key, e.g. ``"customer_id"``
        convert: Column holding the related data itself (nested record);
            used instead of ``reference``
        id: Field of the related model the foreign key refers to
        use_index: The foreign key equals the related model's primary id.
            When ``False`` the target is looked up with ``one()``.
        default: Foreign key value for instances made by ``create()``
    """

    model: str
    reference: str | None = None
    convert: str | None = None
    id: str = "id"
    use_index: bool = True
    default: Any = None


@dataclass
class HasMany:
    """One-to-many relation, or many-to-many when ``through`` is set.

    Attributes:
        model: The related model, e.g. ``"Order"``
        reference: Column (of the related model, or of the junction) that
            refers to the id of this model, e.g. ``"customer_id"``
        belongs_to: Path of the back reference on the related model, e.g.
            ``"customer"``.  Saving sets it to the owning instance.
        through: Name of the junction for many-to-many relations
        id: Junction column that refers to the id of the related model
        fields: Junction columns exposed as Junction fields, ``{column: field}``
        conditions: Additional static conditions on the related rows
        back: The reciprocal hasMany property on the related model
    """

    model: str
    reference: str
    belongs_to: str | None = None
    through: str | None = None
    id: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    conditions: dict[str, Any] = field(default_factory=dict)
    back: str | None = None

    @property
    def many_to_many(self) -> bool:
        return self.through is not None


@dataclass
class ModelConfig:
    """A formal definition of a Repository model."""

    name: str
    plural: str | None = None
    class_: type | None = None
    properties: dict[str, str] = field(default_factory=dict)
    id: list[str] = field(default_factory=list)
    belongs_to: dict[str, BelongsTo] = field(default_factory=dict)
    has_many: dict[str, HasMany] = field(default_factory=dict)
    defaults: dict[str, Any] = field(default_factory=dict)
    backend: str | None = None
    backend_config: Any = None

    def __post_init__(self) -> None:
        if self.plural is None:
            self.plural = self.name + "s"

    def column_for(self, path: str) -> str | None:
        """Backend column mapped onto *path*, if any."""
        for column, mapped in self.properties.items():
            if mapped == path:
                return column
        return None

    def property_names(self) -> list[str]:
        """Top-level instance fields described by this config."""
        names: list[str] = []
        for path in self.properties.values():
            name = PropertyPath.first(path)
            if name not in names:
                names.append(name)
        for name in [*self.belongs_to, *self.has_many]:
            if name not in names:
                names.append(name)
        return names

    def validate(self) -> None:
        """Check the definition, raising ConfigError on the first problem."""
        if not self.name:
            raise ConfigError("A ModelConfig requires a name")
        for column in self.id:
            if column not in self.properties:
                raise ConfigError(
                    f'Id column "{column}" of "{self.name}" has no property mapping'
                ).with_context(model=self.name)
        for prop, relation in self.belongs_to.items():
            if not relation.model:
                raise InvalidRelationError(self.name, prop, "a model is required")
            if (relation.reference is None) == (relation.convert is None):
                raise InvalidRelationError(self.name, prop, 'set either "reference" or "convert"')
            if prop in self.properties.values():
                raise InvalidRelationError(self.name, prop, "the property is also mapped to a column")
        for prop, relation in self.has_many.items():
            if not relation.model:
                raise InvalidRelationError(self.name, prop, "a model is required")
            if not relation.reference:
                raise InvalidRelationError(self.name, prop, 'a "reference" is required')
            if relation.through and not relation.id:
                raise InvalidRelationError(self.name, prop, 'a many-to-many relation requires an "id" column')
            if prop in self.belongs_to:
                raise InvalidRelationError(self.name, prop, "the property is also a belongsTo relation")
        if self.class_ is not None:
            self._validate_class(self.class_)

    def _validate_class(self, cls: type) -> None:
        declared = declared_fields(cls)
        if declared is None:
            return
        expected = self.property_names()
        for name in expected:
            if name not in declared:
                raise ConfigError(
                    f'Property "{name}" doesn\'t exist in a {cls.__name__} object'
                ).with_context(model=self.name, property=name)
        for name in declared:
            if name not in expected:
                raise ConfigError(
                    f"Missing mapping for property: {cls.__name__}.{name}"
                ).with_context(model=self.name, property=name)


def declared_fields(cls: type) -> list[str] | None:
    """Fields a class enumerates itself, or None when it doesn't."""
    fields = getattr(cls, "_fields", None)
    if fields:
        return list(fields)
    if dataclasses.is_dataclass(cls):
        return [f.name for f in dataclasses.fields(cls)]
    return None


__all__ = ["BelongsTo", "HasMany", "ModelConfig", "declared_fields"]
