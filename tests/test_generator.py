"""Tests for the record generator."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from dynamo.errors import ConfigurationError
from dynamo.generator import HTTP_TIME_FORMAT, RecordGenerator, stamp_fields
from dynamo.models import FIELD_ORDER, FormatKind, InjectionSchedule
from dynamo.scenarios import get_scenario

FIXED = datetime(2024, 1, 15, 8, 30, 0, tzinfo=timezone.utc)


def _generator(name="http", offset=20, every=None, seed=11):
    scenario = get_scenario(name, seed=seed, schedule=InjectionSchedule(offset=offset, every=every))
    return RecordGenerator(scenario, clock=lambda: FIXED)


class TestStampFields:
    def test_http_time_and_order(self):
        values = dict(get_scenario("http").anomaly_sequence[0])
        fields = stamp_fields(FormatKind.HTTP, values, FIXED)
        assert fields["time"] == "15/Jan/2024:08:30:00 +0000"
        assert tuple(fields) == FIELD_ORDER[FormatKind.HTTP]

    def test_vpc_start_end_from_duration(self):
        values = dict(get_scenario("vpc").anomaly_sequence[-1])
        fields = stamp_fields(FormatKind.VPC_FLOW, values, FIXED)
        assert fields["end"] == int(FIXED.timestamp())
        assert fields["end"] - fields["start"] == values["duration"]
        assert "duration" not in fields
        assert tuple(fields) == FIELD_ORDER[FormatKind.VPC_FLOW]

    def test_does_not_mutate_narrative(self):
        narrative = get_scenario("vpc").anomaly_sequence
        stamp_fields(FormatKind.VPC_FLOW, narrative[0], FIXED)
        assert "duration" in narrative[0]


class TestNarrativePlacement:
    def test_single_block_at_offset(self):
        gen = _generator(offset=20)
        records = list(gen.records(100))
        flagged = [r.sequence for r in records if r.is_anomaly]
        assert flagged == [20, 21, 22]

    def test_anomalies_replayed_verbatim_in_order(self):
        gen = _generator(offset=5)
        narrative = gen.scenario.anomaly_sequence
        anomalies = [r for r in gen.records(50) if r.is_anomaly]
        assert len(anomalies) == len(narrative)
        for record, expected in zip(anomalies, narrative):
            assert record.fields["path"] == expected["path"]
            assert record.fields["status"] == expected["status"]

    def test_repeating_blocks(self):
        gen = _generator("vpc", offset=10, every=30)
        length = gen.scenario.narrative_length
        records = list(gen.records(10 + 3 * (length + 30)))
        anomalies = [r for r in records if r.is_anomaly]
        assert len(anomalies) == 3 * length

        starts = [r.sequence for r in anomalies if r.sequence == 10 or not records[r.sequence - 1].is_anomaly]
        assert starts == [10, 10 + length + 30, 10 + 2 * (length + 30)]

    def test_order_preserved_across_repeats(self):
        gen = _generator("vpc", offset=0, every=7)
        narrative = gen.scenario.anomaly_sequence
        ports = [r.fields["srcport"] for r in gen.records(200) if r.is_anomaly]
        expected = [r["srcport"] for r in narrative]
        for i in range(0, len(ports) - len(expected) + 1, len(expected)):
            assert ports[i:i + len(expected)] == expected

    def test_narrative_index(self):
        gen = _generator(offset=2)
        assert gen.narrative_index(0) is None
        assert gen.narrative_index(2) == 0
        assert gen.narrative_index(4) == 2
        assert gen.narrative_index(5) is None

    def test_all_records_share_format_kind(self):
        gen = _generator("vpc")
        assert {r.kind for r in gen.records(60)} == {FormatKind.VPC_FLOW}


class TestLifecycle:
    def test_position_advances(self):
        gen = _generator()
        first = gen.next_record()
        second = gen.next_record()
        assert (first.sequence, second.sequence) == (0, 1)
        assert gen.position == 2

    def test_reset_restarts_narrative_positions(self):
        gen = _generator(offset=4)
        before = [r.sequence for r in gen.records(20) if r.is_anomaly]
        gen.reset()
        after = [r.sequence for r in gen.records(20) if r.is_anomaly]
        assert before == after == [4, 5, 6]

    def test_timestamps_from_clock(self):
        gen = _generator()
        record = gen.next_record()
        assert record.timestamp == FIXED
        assert record.scenario == "http"

    def test_malformed_scenario_rejected(self):
        scenario = replace(get_scenario("http"), normal_template=lambda: {})
        with pytest.raises(ConfigurationError):
            RecordGenerator(scenario)


class TestGenerationErrors:
    def _flaky_scenario(self, offset=3):
        base = get_scenario("http", schedule=InjectionSchedule(offset=offset))
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] % 4 == 0:
                raise ValueError("template exploded")
            return base.normal_template()

        return replace(base, normal_template=flaky)

    def test_failed_records_are_skipped(self):
        gen = RecordGenerator(self._flaky_scenario())
        records = list(gen.records(30))
        assert len(records) == 30
        assert gen.skipped > 0
        sequences = [r.sequence for r in records]
        assert sequences == sorted(sequences)
        assert len(sequences) == len(set(sequences))

    def test_narrative_survives_template_failures(self):
        gen = RecordGenerator(self._flaky_scenario(offset=3))
        anomalies = [r.sequence for r in gen.records(30) if r.is_anomaly]
        assert anomalies == [3, 4, 5]

    @staticmethod
    def _failing_on_third_call(name, broken):
        base = get_scenario(name, schedule=InjectionSchedule(offset=50))
        calls = {"n": 0}

        def template():
            calls["n"] += 1
            if calls["n"] == 3:
                return broken(base.normal_template())
            return base.normal_template()

        return replace(base, normal_template=template)

    def test_vpc_record_without_duration_is_skipped(self):
        def drop_duration(values):
            values.pop("duration")
            return values

        gen = RecordGenerator(self._failing_on_third_call("vpc", drop_duration))
        records = list(gen.records(10))
        assert len(records) == 10
        assert gen.skipped == 1
        assert all("start" in r.fields for r in records)

    def test_unexpected_template_exception_is_skipped(self):
        def attribute_error(values):
            return None.foo

        gen = RecordGenerator(self._failing_on_third_call("http", attribute_error))
        records = list(gen.records(10))
        assert len(records) == 10
        assert gen.skipped == 1

    def test_bad_duration_type_is_skipped(self):
        def text_duration(values):
            values["duration"] = "two seconds"
            return values

        gen = RecordGenerator(self._failing_on_third_call("vpc", text_duration))
        assert len(list(gen.records(5))) == 5
        assert gen.skipped == 1

    def test_time_format_constant(self):
        assert FIXED.strftime(HTTP_TIME_FORMAT).endswith("+0000")
