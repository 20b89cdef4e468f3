"""
Tests for the EpidemicModel context: structure, authoring and validation.
"""

import logging

import pytest

from compartsim.model.entities import EntityKind, Population, TimeSegment
from compartsim.model.epidemic import EpidemicModel
from compartsim.simulation.results import ResultFunction, ResultSink
from compartsim.utils.exceptions import (
    ModelValidationError,
    UndefinedReferenceError,
    ValidationError,
)


class TestPopulationStructure:
    """Tests for installing and replacing the population structure."""

    def test_health_compartments(self, health_model):
        assert health_model.compartment_names == ["Healthy", "Sick"]
        assert health_model.shortcut_names == []
        assert health_model.registry.kind_of("Healthy") == EntityKind.COMPARTMENT

    def test_habitants_shared_out(self, stratified_model):
        assert [c.value for c in stratified_model.compartments] == [100.0] * 4
        assert stratified_model.shortcut_names == ["child", "adult", "m", "f"]

    def test_division_needs_two_categories(self):
        model = EpidemicModel()
        with pytest.raises(ValidationError):
            model.set_population(Population.from_categories("P", 10, [("Health", ["Healthy"])]))

    def test_population_needs_a_division(self):
        with pytest.raises(ValidationError):
            EpidemicModel().set_population(Population("P", 10, []))

    def test_category_names_unique_across_divisions(self):
        with pytest.raises(ValidationError):
            EpidemicModel().set_population(Population.from_categories(
                "P", 10, [("A", ["x", "y"]), ("B", ["y", "z"])]
            ))

    def test_category_name_without_separator(self):
        with pytest.raises(ValidationError):
            EpidemicModel().set_population(Population.from_categories("P", 10, [("A", ["x_1", "y"])]))

    def test_rejected_structure_keeps_model(self, health_model):
        health_model.add_parameter("young_m", "0.1")
        structure = Population.from_categories("People", 1000, [
            ("Age", ["young", "old"]), ("Sex", ["m", "f"]), ("Zone", ["n", "s"]),
        ])
        with pytest.raises(ValidationError):
            health_model.preview_restructure(structure)
        with pytest.raises(ValidationError):
            health_model.set_population(structure)

        assert health_model.compartment_names == ["Healthy", "Sick"]
        assert health_model.population.divisions[0].name == "Health"
        assert health_model.registry.kind_of("Healthy") == EntityKind.COMPARTMENT
        assert health_model.registry.kind_of("Health") == EntityKind.DIVISION
        assert health_model.registry.kind_of("young") is None
        health_model.validate()

    def test_generated_name_clashing_with_division(self, health_model):
        structure = Population.from_categories("People", 1000, [
            ("x_y", ["a", "b"]), ("Sex", ["m", "f"]),
        ])
        health_model.set_population(Population.from_categories("People", 1000, [
            ("Sex", ["m", "f"]), ("Zone", ["n", "s"]),
        ]))
        with pytest.raises(ValidationError):
            health_model.set_population(Population.from_categories("People", 1000, [
                ("a_m", ["a", "b"]), ("Sex", ["m", "f"]),
            ]))
        assert health_model.compartment_names == ["m_n", "m_s", "f_n", "f_s"]
        health_model.set_population(structure)
        assert health_model.compartment_names == ["a_m", "a_f", "b_m", "b_f"]

    def test_negative_habitants(self):
        with pytest.raises(ValidationError):
            EpidemicModel().set_population(Population.from_categories("P", -1, [("A", ["x", "y"])]))

    def test_restructure_reports_dependents(self, health_model):
        health_model.add_parameter("total", "Healthy + Sick")
        health_model.add_parameter("rate", "0.5")
        new_structure = Population.from_categories("People", 1000, [("Health", ["Healthy", "Sick", "Dead"])])

        assert health_model.preview_restructure(new_structure) == ["total"]
        affected = health_model.set_population(new_structure)

        assert affected == ["total"]
        assert health_model.compartment_names == ["Healthy", "Sick", "Dead"]
        assert all(c.definition == "" for c in health_model.compartments)
        assert health_model.parameter("total").definition == "Healthy + Sick"
        edges = health_model.graph.named_edges(health_model.name_of)
        assert ("total", "Healthy") in edges

    def test_restructure_can_clear_dependents(self, health_model):
        health_model.add_parameter("total", "Healthy + Sick")
        health_model.set_population(
            Population.from_categories("People", 10, [("Status", ["A", "B"])]),
            clear_dependents=True,
        )
        assert health_model.parameter("total").definition == ""
        assert health_model.graph.references_of(health_model.parameter("total").uid) == set()
        assert not health_model.registry.is_reserved("Healthy")

    def test_preview_does_not_mutate(self, health_model):
        health_model.preview_restructure(
            Population.from_categories("People", 10, [("Status", ["A", "B"])])
        )
        assert health_model.compartment_names == ["Healthy", "Sick"]

    def test_generated_name_clashing_with_parameter(self, health_model):
        health_model.add_parameter("a_b", "1")
        with pytest.raises(ValidationError):
            health_model.set_population(Population.from_categories(
                "P", 10, [("X", ["a", "c"]), ("Y", ["b", "d"])]
            ))
        assert health_model.compartment_names == ["Healthy", "Sick"]

    def test_combinations_preview(self, stratified_model):
        assert stratified_model.combinations({"Age": "adult"}) == ["adult_m", "adult_f"]


class TestAuthoring:
    """Tests for adding and editing definitions."""

    def test_add_parameter_at_index(self, health_model):
        health_model.add_parameter("a", "1")
        health_model.add_parameter("b", "2", index=0)
        assert health_model.parameter_names == ["b", "a"]

    def test_parameter_scope_depends_on_position(self, health_model):
        health_model.add_parameter("a", "1")
        with pytest.raises(UndefinedReferenceError):
            health_model.add_parameter("b", "a*2", index=0)
        assert health_model.parameter_names == ["a"]
        assert not health_model.registry.is_reserved("b")

    def test_duplicate_name_rejected(self, health_model):
        with pytest.raises(ValidationError):
            health_model.add_parameter("Healthy", "1")

    def test_process_segments_sorted(self, health_model):
        process = health_model.add_process("p", [(10.0, "2"), (0.0, "1")])
        assert [s.start for s in process.segments] == [0.0, 10.0]

    def test_duplicate_segment_start_rejected(self, health_model):
        with pytest.raises(ValidationError, match="start"):
            health_model.add_process("p", [TimeSegment(0.0, "1"), TimeSegment(0.0, "2")])
        assert "p" not in health_model.process_names

    def test_compartment_may_reference_itself_and_everything(self, health_model):
        health_model.add_parameter("k", "0.1")
        health_model.add_process("p", "k*Sick")
        health_model.set_compartment_definition("Sick", "p + k*Sick")
        assert health_model.compartment("Sick").definition == "p + k*Sick"

    def test_negative_initial_value_rejected(self, health_model):
        with pytest.raises(ValidationError):
            health_model.set_compartment_value("Sick", -1)

    def test_allowed_names(self, health_model):
        health_model.add_parameter("a", "1")
        health_model.add_parameter("b", "a")
        health_model.add_process("p", "b")
        assert health_model.allowed_names("a") == {"Healthy", "Sick"}
        assert health_model.allowed_names("b") == {"Healthy", "Sick", "a"}
        assert health_model.allowed_names("p") == {"Healthy", "Sick", "a", "b"}
        assert health_model.allowed_names("Sick") == {"Healthy", "Sick", "a", "b", "p"}

    def test_result_functions_validated(self, health_model):
        with pytest.raises(UndefinedReferenceError):
            health_model.add_result(ResultSink("r", [ResultFunction("Dead")]))
        health_model.add_result(ResultSink("r", [ResultFunction("Healthy + Sick")]))
        assert len(health_model.results) == 1

    def test_rename_rewrites_result_functions(self, health_model):
        health_model.add_parameter("k", "0.01")
        health_model.add_result(ResultSink("r", [ResultFunction("k*Healthy")]))
        health_model.rename("k", "rate")
        assert health_model.results[0].functions[0].expression == "rate*Healthy"


class TestValidate:
    """Tests for whole-model validation."""

    def test_valid_model(self, health_model):
        health_model.validate()

    def test_empty_model(self):
        with pytest.raises(ModelValidationError):
            EpidemicModel().validate()

    def test_values_must_add_up(self, health_model):
        health_model.set_compartment_value("Sick", 5)
        with pytest.raises(ModelValidationError, match="add up"):
            health_model.validate()

    def test_stale_reference_reported(self, health_model):
        health_model.add_parameter("total", "Healthy + Sick")
        health_model.set_population(Population.from_categories("People", 1000, [("Status", ["A", "B"])]))
        with pytest.raises(ModelValidationError) as exc_info:
            health_model.validate()
        assert any("total" in issue for issue in exc_info.value.issues)

    def test_late_first_segment_warns(self, health_model, caplog):
        health_model.add_process("campaign", [(3.0, "0.2"), (6.0, "0")])
        with caplog.at_level(logging.WARNING, logger="compartsim"):
            health_model.validate()
        assert any("campaign" in r.getMessage() and "t=3" in r.getMessage() for r in caplog.records)
        assert health_model.process("campaign").segment_at(1.0).definition == "0.2"

    def test_segments_from_zero_do_not_warn(self, health_model, caplog):
        health_model.add_process("campaign", [(0.0, "0"), (3.0, "0.2")])
        with caplog.at_level(logging.WARNING, logger="compartsim"):
            health_model.validate()
        assert not any("campaign" in r.getMessage() for r in caplog.records)

    def test_unsorted_segments_reported(self, health_model):
        process = health_model.add_process("p", [(0.0, "1"), (5.0, "2")])
        process.segments.reverse()
        with pytest.raises(ModelValidationError, match="strictly increase"):
            health_model.validate()
