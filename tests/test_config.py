"""Tests for ModelConfig definitions and their validation."""

from dataclasses import dataclass
from typing import Any

import pytest

from relmap.config import BelongsTo, HasMany, ModelConfig, declared_fields
from relmap.errors import ConfigError, InvalidRelationError


@dataclass
class Car:
    id: int
    model: str
    owner: Any = None


class TestModelConfig:
    def test_plural_defaults_to_name_plus_s(self):
        assert ModelConfig("Customer").plural == "Customers"

    def test_explicit_plural(self):
        assert ModelConfig("Person", plural="People").plural == "People"

    def test_column_for(self):
        config = ModelConfig("Customer", properties={"customer_name": "name"})
        assert config.column_for("name") == "customer_name"
        assert config.column_for("unknown") is None

    def test_property_names(self):
        config = ModelConfig(
            "Order",
            properties={"id": "id", "product": "product", "color": "meta[color]"},
            belongs_to={"customer": BelongsTo("Customer", reference="customer_id")},
        )
        assert config.property_names() == ["id", "product", "meta", "customer"]

    def test_many_to_many(self):
        assert HasMany("Club", reference="customer_id", through="memberships", id="club_id").many_to_many
        assert not HasMany("Order", reference="customer_id").many_to_many


class TestValidate:
    def test_valid_config(self):
        ModelConfig(
            "Order",
            properties={"id": "id"},
            id=["id"],
            belongs_to={"customer": BelongsTo("Customer", reference="customer_id")},
        ).validate()

    def test_id_column_requires_mapping(self):
        with pytest.raises(ConfigError, match='Id column "id"'):
            ModelConfig("Order", id=["id"]).validate()

    def test_belongs_to_requires_reference_or_convert(self):
        config = ModelConfig("Order", belongs_to={"customer": BelongsTo("Customer")})
        with pytest.raises(InvalidRelationError, match='set either "reference" or "convert"'):
            config.validate()

    def test_belongs_to_rejects_both(self):
        relation = BelongsTo("Customer", reference="customer_id", convert="customer")
        with pytest.raises(InvalidRelationError):
            ModelConfig("Order", belongs_to={"customer": relation}).validate()

    def test_many_to_many_requires_id(self):
        config = ModelConfig("Customer", has_many={"clubs": HasMany("Club", reference="customer_id", through="m")})
        with pytest.raises(InvalidRelationError, match="requires an \"id\" column"):
            config.validate()

    def test_has_many_requires_reference(self):
        config = ModelConfig("Customer", has_many={"orders": HasMany("Order", reference="")})
        with pytest.raises(InvalidRelationError, match='a "reference" is required'):
            config.validate()

    def test_relation_property_cannot_be_a_column(self):
        config = ModelConfig(
            "Order",
            properties={"customer": "customer"},
            belongs_to={"customer": BelongsTo("Customer", reference="customer_id")},
        )
        with pytest.raises(InvalidRelationError, match="also mapped to a column"):
            config.validate()


class TestClassValidation:
    def test_matching_dataclass(self):
        ModelConfig(
            "Car",
            class_=Car,
            properties={"id": "id", "model": "model"},
            id=["id"],
            belongs_to={"owner": BelongsTo("Customer", reference="owner_id")},
        ).validate()

    def test_mapped_property_missing_from_class(self):
        config = ModelConfig("Car", class_=Car, properties={"id": "id", "model": "model", "wheels": "wheels"})
        with pytest.raises(ConfigError, match='Property "wheels" doesn\'t exist in a Car object'):
            config.validate()

    def test_class_field_without_mapping(self):
        config = ModelConfig("Car", class_=Car, properties={"id": "id", "model": "model"}, id=["id"])
        with pytest.raises(ConfigError, match="Missing mapping for property: Car.owner"):
            config.validate()

    def test_plain_class_is_not_validated(self):
        class Plain:
            pass

        assert declared_fields(Plain) is None
        ModelConfig("Plain", class_=Plain, properties={"id": "id"}, id=["id"]).validate()
