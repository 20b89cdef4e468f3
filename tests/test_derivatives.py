"""
Tests for the derivative evaluator.
"""

import numpy as np
import pytest

from compartsim.model.entities import Population
from compartsim.model.epidemic import EpidemicModel
from compartsim.simulation.derivatives import DerivativeEvaluator
from compartsim.utils.exceptions import EvaluationError


@pytest.fixture
def campaign_model():
    """Healthy/Sick model whose infection rate halves from t=30."""
    model = EpidemicModel("campaign", horizon=60.0)
    model.set_population(Population.from_categories("People", 1000, [("Health", ["Healthy", "Sick"])]))
    model.set_compartment_values({"Healthy": 900, "Sick": 100})
    model.add_parameter("k", "0.01")
    model.add_parameter("share", "Sick/(Healthy + Sick)")
    model.add_process("campaign", [(0.0, "1"), (30.0, "0.5")])
    model.add_process("infection", "k*campaign*Healthy")
    model.set_compartment_definition("Healthy", "-infection")
    model.set_compartment_definition("Sick", "infection")
    return model


class TestBinding:
    """Tests for the forward binding pass."""

    def test_values_flow_in_order(self, campaign_model):
        f = DerivativeEvaluator(campaign_model)
        values = f.bind(0.0, [900.0, 100.0])
        assert values["share"] == pytest.approx(0.1)
        assert values["campaign"] == pytest.approx(1.0)
        assert values["infection"] == pytest.approx(9.0)

    @pytest.mark.parametrize("t,rate", [(0.0, 1.0), (29.9, 1.0), (30.0, 0.5), (45.0, 0.5)])
    def test_segment_in_force(self, campaign_model, t, rate):
        f = DerivativeEvaluator(campaign_model)
        assert f.bind(t, [900.0, 100.0])["campaign"] == pytest.approx(rate)

    def test_shortcuts_are_live_sums(self, stratified_model):
        f = DerivativeEvaluator(stratified_model)
        values = f.bind(0.0, [1.0, 2.0, 3.0, 4.0])
        assert values["child"] == pytest.approx(3.0)
        assert values["adult"] == pytest.approx(7.0)
        assert values["m"] == pytest.approx(4.0)
        assert values["f"] == pytest.approx(6.0)

    def test_state_argument_used_not_model_values(self, campaign_model):
        f = DerivativeEvaluator(campaign_model)
        assert f.bind(0.0, [500.0, 500.0])["share"] == pytest.approx(0.5)
        assert campaign_model.compartment("Healthy").value == 900.0


class TestDerivatives:
    """Tests for the derivative vector."""

    def test_derivative_vector(self, campaign_model):
        f = DerivativeEvaluator(campaign_model)
        np.testing.assert_allclose(f(0.0, [900.0, 100.0]), [-9.0, 9.0])
        np.testing.assert_allclose(f(40.0, [900.0, 100.0]), [-4.5, 4.5])
        assert f.evaluations == 2

    def test_missing_definition_is_zero(self, stratified_model):
        stratified_model.set_compartment_definition("child_m", "-child")
        f = DerivativeEvaluator(stratified_model)
        np.testing.assert_allclose(f(0.0, [1.0, 2.0, 3.0, 4.0]), [-3.0, 0.0, 0.0, 0.0])

    def test_empty_parameter_is_zero(self, health_model):
        health_model.add_parameter("unset")
        health_model.set_compartment_definition("Sick", "unset + 1")
        f = DerivativeEvaluator(health_model)
        assert f(0.0, [1000.0, 0.0])[1] == pytest.approx(1.0)

    def test_evaluation_error_names_entity_and_time(self, health_model):
        health_model.add_parameter("ratio", "Healthy/Sick")
        f = DerivativeEvaluator(health_model)
        with pytest.raises(EvaluationError) as exc_info:
            f(2.5, [1000.0, 0.0])
        assert exc_info.value.entity == "ratio"
        assert exc_info.value.time == 2.5

    def test_evaluate_expressions(self, campaign_model):
        f = DerivativeEvaluator(campaign_model)
        values = f.evaluate_expressions(0.0, [900.0, 100.0], ["Healthy + Sick", "infection*2"])
        assert values == pytest.approx([1000.0, 18.0])

    def test_seeded_random_definitions_repeat(self, health_model):
        health_model.add_parameter("noise", "Normal(0, 1)")
        health_model.set_compartment_definition("Sick", "noise")
        first = DerivativeEvaluator(health_model, seed=11)(0.0, [1000.0, 0.0])
        second = DerivativeEvaluator(health_model, seed=11)(0.0, [1000.0, 0.0])
        assert first[1] == second[1]
