"""
Scenario Library - Scripted log formats and their anomaly narratives

Each scenario pairs a format kind with a normal-traffic template and a fixed,
ordered anomaly narrative. Narrative values are drawn once when the scenario
is built and replayed verbatim afterwards.
"""
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from faker import Faker

from .errors import ConfigurationError
from .models import (
    FormatKind,
    InjectionSchedule,
    Scenario,
    freeze_sequence,
    template_fields,
)
from .templates import STORE_HOST, HttpFieldTemplates, VpcFieldTemplates

logger = logging.getLogger(__name__)


DEFAULT_SCHEDULE = InjectionSchedule(offset=20, every=None)


def _credit_card_leak(fake: Faker) -> List[Dict]:
    """A shopper's checkout fails and the retry leaks the card in the URL"""
    shopper = {
        "remote_host": fake.ipv4_public(),
        "ident": "-",
        "user": fake.user_name(),
        "protocol": "HTTP/1.1",
        "user_agent": fake.user_agent(),
    }
    card = fake.credit_card_number()
    expiry = fake.credit_card_expire()
    cvv = fake.credit_card_security_code()

    return [
        dict(shopper, method="GET", path="/cart", status=200, size=5120,
             referer=f"{STORE_HOST}/products/{fake.slug()}"),
        dict(shopper, method="POST", path="/checkout", status=504, size=0,
             referer=f"{STORE_HOST}/cart"),
        dict(shopper, method="GET",
             path=f"/checkout/retry?card_number={card}&exp={expiry}&cvv={cvv}",
             status=500, size=312, referer=f"{STORE_HOST}/checkout"),
    ]


def _ssh_brute_force(fake: Faker, vpc: VpcFieldTemplates, attempts: int = 8) -> List[Dict]:
    """Port scan, a run of short SSH sessions, then one long-lived session"""
    attacker = fake.ipv4_public()
    target = vpc.servers[0]
    base = {
        "version": 2,
        "account_id": vpc.ACCOUNT_ID,
        "interface_id": vpc.interface_id,
        "srcaddr": attacker,
        "dstaddr": target,
        "protocol": 6,
        "log_status": "OK",
    }
    port = 40000

    records = []
    for probe in (23, 3389, 21):
        records.append(dict(base, srcport=port, dstport=probe, packets=1,
                            bytes=44, duration=1, action="REJECT"))
        port += 1

    for _ in range(attempts):
        records.append(dict(base, srcport=port, dstport=22, packets=14,
                            bytes=2836, duration=2, action="ACCEPT"))
        port += 1

    records.append(dict(base, srcport=port, dstport=22, packets=4210,
                        bytes=1893452, duration=540, action="ACCEPT"))
    return records


def build_http_scenario(seed: Optional[int] = None) -> Scenario:
    fake = Faker()
    if seed is not None:
        fake.seed_instance(seed)
    return Scenario(
        name="http",
        kind=FormatKind.HTTP,
        service="storedog",
        normal_template=HttpFieldTemplates(seed).normal,
        anomaly_sequence=freeze_sequence(_credit_card_leak(fake)),
        schedule=DEFAULT_SCHEDULE,
        description="storedog access logs with a credit card leak on checkout retry",
    )


def build_vpc_scenario(seed: Optional[int] = None) -> Scenario:
    fake = Faker()
    if seed is not None:
        fake.seed_instance(seed)
    vpc = VpcFieldTemplates(seed)
    return Scenario(
        name="vpc",
        kind=FormatKind.VPC_FLOW,
        service="aws.vpc_flow_logs",
        normal_template=vpc.normal,
        anomaly_sequence=freeze_sequence(_ssh_brute_force(fake, vpc)),
        schedule=DEFAULT_SCHEDULE,
        description="VPC flow logs with an SSH brute force ending in a login",
    )


SCENARIO_BUILDERS: Dict[str, Callable[[Optional[int]], Scenario]] = {
    "http": build_http_scenario,
    "vpc": build_vpc_scenario,
}


def available_scenarios() -> List[str]:
    return sorted(SCENARIO_BUILDERS)


def validate_scenario(scenario: Scenario) -> None:
    """Raise ConfigurationError if the scenario cannot produce valid records"""
    required = template_fields(scenario.kind)

    if not scenario.anomaly_sequence:
        raise ConfigurationError(f"scenario {scenario.name!r} has an empty anomaly narrative")

    for index, record in enumerate(scenario.anomaly_sequence):
        missing = [f for f in required if f not in record]
        if missing:
            raise ConfigurationError(
                f"scenario {scenario.name!r} narrative record {index} is missing {missing}"
            )

    try:
        sample = scenario.normal_template()
    except Exception as e:
        raise ConfigurationError(
            f"scenario {scenario.name!r} normal template failed: {e}"
        ) from e

    missing = [f for f in required if f not in sample]
    if missing:
        raise ConfigurationError(
            f"scenario {scenario.name!r} normal template is missing {missing}"
        )

    scenario.schedule.validate()


def get_scenario(
    name: str,
    seed: Optional[int] = None,
    schedule: Optional[InjectionSchedule] = None,
) -> Scenario:
    """Build and validate a scenario from the library"""
    builder = SCENARIO_BUILDERS.get(name)
    if builder is None:
        raise ConfigurationError(
            f"unknown scenario {name!r}, choose from {', '.join(available_scenarios())}"
        )

    scenario = builder(seed)
    if schedule is not None:
        scenario = replace(scenario, schedule=schedule)

    validate_scenario(scenario)
    logger.debug("Built scenario %s (%d narrative records)", name, scenario.narrative_length)
    return scenario
