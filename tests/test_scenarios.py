"""Tests for the scenario library."""

from dataclasses import replace

import pytest

from dynamo.errors import ConfigurationError
from dynamo.models import FormatKind, InjectionSchedule, freeze_sequence, template_fields
from dynamo.scenarios import available_scenarios, get_scenario, validate_scenario


class TestLibrary:
    def test_available_scenarios(self):
        assert available_scenarios() == ["http", "vpc"]

    def test_unknown_scenario(self):
        with pytest.raises(ConfigurationError, match="unknown scenario"):
            get_scenario("syslog")

    def test_kinds_and_services(self):
        http = get_scenario("http")
        vpc = get_scenario("vpc")
        assert http.kind == FormatKind.HTTP
        assert http.service == "storedog"
        assert vpc.kind == FormatKind.VPC_FLOW
        assert vpc.service == "aws.vpc_flow_logs"

    def test_schedule_override(self):
        scenario = get_scenario("http", schedule=InjectionSchedule(offset=3, every=10))
        assert scenario.schedule.offset == 3
        assert scenario.schedule.every == 10

    def test_invalid_schedule_override(self):
        with pytest.raises(ConfigurationError):
            get_scenario("http", schedule=InjectionSchedule(offset=-2))

    def test_same_seed_same_narrative(self):
        a = get_scenario("vpc", seed=7)
        b = get_scenario("vpc", seed=7)
        assert [dict(r) for r in a.anomaly_sequence] == [dict(r) for r in b.anomaly_sequence]


class TestCreditCardLeak:
    def test_single_shopper(self):
        narrative = get_scenario("http", seed=1).anomaly_sequence
        assert len(narrative) == 3
        assert len({r["remote_host"] for r in narrative}) == 1
        assert len({r["user_agent"] for r in narrative}) == 1

    def test_checkout_fails_then_retry_leaks_card(self):
        narrative = get_scenario("http", seed=1).anomaly_sequence
        assert (narrative[0]["method"], narrative[0]["path"], narrative[0]["status"]) == ("GET", "/cart", 200)
        assert (narrative[1]["method"], narrative[1]["path"], narrative[1]["status"]) == ("POST", "/checkout", 504)
        assert narrative[2]["status"] == 500
        assert "card_number=" in narrative[2]["path"]
        assert "cvv=" in narrative[2]["path"]
        assert " " not in narrative[2]["path"]


class TestSshBruteForce:
    def test_narrative_shape(self):
        narrative = get_scenario("vpc", seed=3).anomaly_sequence
        actions = [r["action"] for r in narrative]
        ports = [r["dstport"] for r in narrative]

        assert actions[:3] == ["REJECT"] * 3
        assert 22 not in ports[:3]
        attempts = narrative[3:-1]
        assert len(attempts) > 1
        assert all(r["dstport"] == 22 and r["action"] == "ACCEPT" for r in attempts)

        login = narrative[-1]
        assert login["dstport"] == 22
        assert login["action"] == "ACCEPT"
        assert login["bytes"] > max(r["bytes"] for r in attempts) * 100

    def test_single_attacker_and_target(self):
        narrative = get_scenario("vpc", seed=3).anomaly_sequence
        assert len({r["srcaddr"] for r in narrative}) == 1
        assert len({r["dstaddr"] for r in narrative}) == 1

    def test_source_ports_increase(self):
        narrative = get_scenario("vpc", seed=3).anomaly_sequence
        ports = [r["srcport"] for r in narrative]
        assert ports == sorted(ports)
        assert len(set(ports)) == len(ports)


class TestValidateScenario:
    def test_library_scenarios_are_valid(self):
        for name in available_scenarios():
            validate_scenario(get_scenario(name))

    def test_narrative_missing_field(self):
        scenario = get_scenario("http")
        broken = dict(scenario.anomaly_sequence[0])
        del broken["status"]
        bad = replace(scenario, anomaly_sequence=freeze_sequence([broken]))
        with pytest.raises(ConfigurationError, match="missing"):
            validate_scenario(bad)

    def test_empty_narrative(self):
        bad = replace(get_scenario("vpc"), anomaly_sequence=())
        with pytest.raises(ConfigurationError, match="empty"):
            validate_scenario(bad)

    def test_normal_template_missing_field(self):
        scenario = get_scenario("vpc")
        bad = replace(scenario, normal_template=lambda: {"version": 2})
        with pytest.raises(ConfigurationError, match="normal template"):
            validate_scenario(bad)

    def test_normal_template_raises(self):
        def explode():
            raise RuntimeError("no data")

        bad = replace(get_scenario("http"), normal_template=explode)
        with pytest.raises(ConfigurationError, match="no data"):
            validate_scenario(bad)

    def test_normal_template_output_is_complete(self):
        for name in available_scenarios():
            scenario = get_scenario(name)
            sample = scenario.normal_template()
            assert set(template_fields(scenario.kind)) <= set(sample)
