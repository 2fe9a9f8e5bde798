"""Build a PowerSystem from configuration dictionaries."""

from __future__ import annotations

import logging
import math
from typing import Any

from nodalflow.config import settings
from nodalflow.network.bus import BusType
from nodalflow.network.network_model import PowerSystem
from nodalflow.schemas.network import NetworkConfig

logger = logging.getLogger(__name__)

BUS_TYPES = {"pq": BusType.PQ, "pv": BusType.PV, "slack": BusType.SLACK}


def build_system_from_config(config: NetworkConfig | dict[str, Any]) -> PowerSystem:
    """Build a PowerSystem from a network configuration.

    Args:
        config: ``NetworkConfig`` or a dict with keys:
            base_power_mva (optional, defaults to settings),
            buses, branches, generators (lists of dicts, see schemas)

    Bus types are applied as given; a generator placed on a demand bus
    promotes it to a generator bus.
    """
    if not isinstance(config, NetworkConfig):
        config = NetworkConfig.model_validate(config)

    base = config.base_power_mva or settings.base_power_mva
    system = PowerSystem(base_power_mva=base)

    for bc in config.buses:
        system.add_bus(
            label=bc.label,
            bus_type=BUS_TYPES[bc.bus_type],
            active=bc.active_mw / base,
            reactive=bc.reactive_mvar / base,
            conductance=bc.conductance_mw / base,
            susceptance=bc.susceptance_mvar / base,
            magnitude=bc.magnitude_pu,
            angle=math.radians(bc.angle_deg),
            min_magnitude=bc.min_magnitude_pu,
            max_magnitude=bc.max_magnitude_pu,
            area=bc.area,
            loss_zone=bc.loss_zone,
        )

    for brc in config.branches:
        system.add_branch(
            from_bus=brc.from_bus,
            to_bus=brc.to_bus,
            label=brc.label,
            status=brc.status,
            resistance=brc.resistance_pu,
            reactance=brc.reactance_pu,
            conductance=brc.conductance_pu,
            susceptance=brc.susceptance_pu,
            turns_ratio=brc.turns_ratio,
            shift_angle=math.radians(brc.shift_angle_deg),
            long_term=brc.rating_mva / base,
        )

    for gc in config.generators:
        system.add_generator(
            bus=gc.bus,
            label=gc.label,
            status=gc.status,
            active=gc.active_mw / base,
            reactive=gc.reactive_mvar / base,
            magnitude=gc.magnitude_pu,
            min_active=gc.min_active_mw / base,
            max_active=gc.max_active_mw / base,
            min_reactive=gc.min_reactive_mvar / base,
            max_reactive=gc.max_reactive_mvar / base,
        )

    logger.info(
        "Built power system: %d buses, %d branches, %d generators",
        system.bus.number, system.branch.number, system.generator.number,
    )
    return system
