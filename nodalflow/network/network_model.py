"""Power system model: element registries, mutation API and nodal models.

``PowerSystem`` is the authoritative store of bus, branch and generator
parameters. Every mutation validates its input before touching any state,
keeps the per-bus ``supply`` aggregates consistent with in-service
generators, and patches an already built AC/DC nodal model incrementally.
Adding a bus changes the matrix dimension, so it empties both models.
"""

from __future__ import annotations

import logging
import math
from bisect import insort
from dataclasses import dataclass, field

from nodalflow.exceptions import StructureError
from nodalflow.network.branch import Branch
from nodalflow.network.bus import Bus, BusType
from nodalflow.network.generator import Generator
from nodalflow.network.nodal_model import (
    ACModel,
    DCModel,
    Model,
    ac_nodal_update,
    ac_parameter_update,
    ac_push_zeros,
    ac_set_zeros,
    ac_shunt_update,
    build_ac_model,
    build_dc_model,
    dc_admittance,
    dc_nodal_update,
    dc_shift_update,
    empty_ac_model,
    empty_dc_model,
    pi_model,
)

logger = logging.getLogger(__name__)

Label = int | str


def check_status(status: int) -> int:
    if status not in (0, 1):
        raise StructureError(f"The status value {status!r} is illegal; expected 0 or 1.")
    return int(status)


def _numbers(**values: float | None) -> list[float | None]:
    """Convert keyword values to float, leaving None in place."""
    result = []
    for name, value in values.items():
        if value is None:
            result.append(None)
            continue
        try:
            result.append(float(value))
        except (TypeError, ValueError):
            raise StructureError(f"The {name} value {value!r} is not a number.") from None
    return result


def check_bus_type(bus_type: int) -> BusType:
    try:
        return BusType(bus_type)
    except ValueError:
        raise StructureError(f"The bus type value {bus_type!r} is illegal.") from None


@dataclass
class PowerSystem:
    """Complete network with AC and DC nodal models."""
    bus: Bus = field(default_factory=Bus)
    branch: Branch = field(default_factory=Branch)
    generator: Generator = field(default_factory=Generator)
    model: Model = field(default_factory=Model)
    base_power_mva: float = 100.0

    # ------------------------------------------------------------------
    # Nodal models
    # ------------------------------------------------------------------

    def ac_model(self) -> ACModel:
        """AC nodal model, built on first use."""
        if self.model.ac.is_empty:
            build_ac_model(self)
        return self.model.ac

    def dc_model(self) -> DCModel:
        """DC nodal model, built on first use."""
        if self.model.dc.is_empty:
            build_dc_model(self)
        return self.model.dc

    # ------------------------------------------------------------------
    # Bus
    # ------------------------------------------------------------------

    def add_bus(
        self,
        label: Label | None = None,
        bus_type: int = BusType.PQ,
        active: float = 0.0,
        reactive: float = 0.0,
        conductance: float = 0.0,
        susceptance: float = 0.0,
        magnitude: float = 1.0,
        angle: float = 0.0,
        min_magnitude: float = 0.0,
        max_magnitude: float = math.inf,
        area: int = 1,
        loss_zone: int = 1,
    ) -> int:
        """Append a bus and return its dense index.

        Any built AC or DC model is emptied, since the bus count changes
        the nodal matrix dimension.
        """
        (
            active, reactive, conductance, susceptance, magnitude, angle,
            min_magnitude, max_magnitude,
        ) = _numbers(
            active=active, reactive=reactive, conductance=conductance,
            susceptance=susceptance, magnitude=magnitude, angle=angle,
            min_magnitude=min_magnitude, max_magnitude=max_magnitude,
        )
        bus = self.bus
        key = bus.label.new_key(label)
        bus_type = check_bus_type(bus_type)
        if bus_type == BusType.SLACK and bus.layout.slack != -1:
            raise StructureError("The slack bus has already been designated.")

        idx = bus.label.register(key)
        bus.layout.type.append(bus_type)
        if bus_type == BusType.SLACK:
            bus.layout.slack = idx
        bus.layout.area.append(area)
        bus.layout.loss_zone.append(loss_zone)

        bus.demand.active.append(active)
        bus.demand.reactive.append(reactive)
        bus.shunt.conductance.append(conductance)
        bus.shunt.susceptance.append(susceptance)
        bus.voltage.magnitude.append(magnitude)
        bus.voltage.angle.append(angle)
        bus.voltage.min_magnitude.append(min_magnitude)
        bus.voltage.max_magnitude.append(max_magnitude)

        bus.supply.active.append(0.0)
        bus.supply.reactive.append(0.0)
        bus.supply.generator.append([])

        if not self.model.ac.is_empty:
            empty_ac_model(self.model.ac)
            logger.info("The AC model has been completely erased.", extra={"bus": key})
        if not self.model.dc.is_empty:
            empty_dc_model(self.model.dc)
            logger.info("The DC model has been completely erased.", extra={"bus": key})

        return idx

    def update_bus(
        self,
        label: Label,
        bus_type: int | None = None,
        active: float | None = None,
        reactive: float | None = None,
        conductance: float | None = None,
        susceptance: float | None = None,
        magnitude: float | None = None,
        angle: float | None = None,
        min_magnitude: float | None = None,
        max_magnitude: float | None = None,
        area: int | None = None,
        loss_zone: int | None = None,
    ) -> int:
        """Update bus parameters in place and return the bus index.

        Designating a new slack requires the current slack to be demoted
        first. A shunt change patches the AC diagonal entry.
        """
        (
            active, reactive, conductance, susceptance, magnitude, angle,
            min_magnitude, max_magnitude,
        ) = _numbers(
            active=active, reactive=reactive, conductance=conductance,
            susceptance=susceptance, magnitude=magnitude, angle=angle,
            min_magnitude=min_magnitude, max_magnitude=max_magnitude,
        )
        bus = self.bus
        idx = bus.index(label)

        if bus_type is not None:
            bus_type = check_bus_type(bus_type)
            if (
                bus_type == BusType.SLACK
                and bus.layout.slack not in (-1, idx)
            ):
                raise StructureError(
                    f"To set bus {label!r} as the slack bus, reassign the current "
                    "slack bus to either a generator or demand bus."
                )
            if bus_type != bus.layout.type[idx]:
                self.change_bus_type(idx, bus_type)

        if active is not None:
            bus.demand.active[idx] = active
        if reactive is not None:
            bus.demand.reactive[idx] = reactive

        if conductance is not None or susceptance is not None:
            ac_built = not self.model.ac.is_empty
            if ac_built:
                old = complex(bus.shunt.conductance[idx], bus.shunt.susceptance[idx])
                ac_shunt_update(self, idx, -old)
            if conductance is not None:
                bus.shunt.conductance[idx] = conductance
            if susceptance is not None:
                bus.shunt.susceptance[idx] = susceptance
            if ac_built:
                new = complex(bus.shunt.conductance[idx], bus.shunt.susceptance[idx])
                ac_shunt_update(self, idx, new)

        if magnitude is not None:
            bus.voltage.magnitude[idx] = magnitude
        if angle is not None:
            bus.voltage.angle[idx] = angle
        if min_magnitude is not None:
            bus.voltage.min_magnitude[idx] = min_magnitude
        if max_magnitude is not None:
            bus.voltage.max_magnitude[idx] = max_magnitude
        if area is not None:
            bus.layout.area[idx] = area
        if loss_zone is not None:
            bus.layout.loss_zone[idx] = loss_zone

        return idx

    def change_bus_type(self, idx: int, bus_type: BusType) -> None:
        """Set the type of bus ``idx`` without the slack checks of update_bus."""
        layout = self.bus.layout
        if layout.slack == idx and bus_type != BusType.SLACK:
            layout.slack = -1
        layout.type[idx] = bus_type
        if bus_type == BusType.SLACK:
            layout.slack = idx
        layout.pattern += 1

    # ------------------------------------------------------------------
    # Branch
    # ------------------------------------------------------------------

    def add_branch(
        self,
        from_bus: Label,
        to_bus: Label,
        label: Label | None = None,
        status: int = 1,
        resistance: float = 0.0,
        reactance: float = 0.0,
        conductance: float = 0.0,
        susceptance: float = 0.0,
        turns_ratio: float = 1.0,
        shift_angle: float = 0.0,
        long_term: float = 0.0,
        short_term: float = 0.0,
        emergency: float = 0.0,
        min_diff_angle: float = -2 * math.pi,
        max_diff_angle: float = 2 * math.pi,
    ) -> int:
        """Append a branch and return its dense index.

        A built nodal model receives zero cache entries for the branch and,
        when it starts in service, its π-model terms are added in place.
        """
        (
            resistance, reactance, conductance, susceptance, turns_ratio,
            shift_angle, long_term, short_term, emergency, min_diff_angle,
            max_diff_angle,
        ) = _numbers(
            resistance=resistance, reactance=reactance, conductance=conductance,
            susceptance=susceptance, turns_ratio=turns_ratio,
            shift_angle=shift_angle, long_term=long_term, short_term=short_term,
            emergency=emergency, min_diff_angle=min_diff_angle,
            max_diff_angle=max_diff_angle,
        )
        branch = self.branch
        key = branch.label.new_key(label)
        i = self.bus.index(from_bus)
        j = self.bus.index(to_bus)
        if i == j:
            raise StructureError("Invalid value for from or to bus: a branch needs two distinct buses.")
        status = check_status(status)
        if resistance == 0.0 and reactance == 0.0:
            raise StructureError("At least one of resistance or reactance is required.")
        if status == 1 and reactance == 0.0 and not self.model.dc.is_empty:
            raise StructureError("The DC model requires a nonzero reactance for an in-service branch.")

        idx = branch.label.register(key)
        branch.layout.from_bus.append(i)
        branch.layout.to_bus.append(j)
        branch.layout.status.append(status)
        if status == 1:
            branch.layout.in_service += 1

        param = branch.parameter
        param.resistance.append(resistance)
        param.reactance.append(reactance)
        param.conductance.append(conductance)
        param.susceptance.append(susceptance)
        param.turns_ratio.append(turns_ratio)
        param.shift_angle.append(shift_angle)
        branch.rating.long_term.append(long_term)
        branch.rating.short_term.append(short_term)
        branch.rating.emergency.append(emergency)
        branch.voltage.min_diff_angle.append(min_diff_angle)
        branch.voltage.max_diff_angle.append(max_diff_angle)

        ac = self.model.ac
        if not ac.is_empty:
            ac_push_zeros(ac)
            ac.transformer_ratio[idx] = pi_model(self, idx)[5]
            if status == 1:
                ac_parameter_update(self, idx)
                ac_nodal_update(self, idx)

        dc = self.model.dc
        if not dc.is_empty:
            dc.admittance.append(dc_admittance(self, idx))
            if status == 1:
                dc_shift_update(self, idx)
                dc_nodal_update(self, idx)

        return idx

    def update_branch(
        self,
        label: Label,
        status: int | None = None,
        resistance: float | None = None,
        reactance: float | None = None,
        conductance: float | None = None,
        susceptance: float | None = None,
        turns_ratio: float | None = None,
        shift_angle: float | None = None,
        long_term: float | None = None,
        short_term: float | None = None,
        emergency: float | None = None,
        min_diff_angle: float | None = None,
        max_diff_angle: float | None = None,
    ) -> int:
        """Update branch status or parameters and return the branch index.

        Status and π-model changes are applied to built nodal models as a
        subtract-old / recompute / add-new sequence. Calling with no
        arguments leaves both nodal matrices untouched.
        """
        (
            resistance, reactance, conductance, susceptance, turns_ratio,
            shift_angle, long_term, short_term, emergency, min_diff_angle,
            max_diff_angle,
        ) = _numbers(
            resistance=resistance, reactance=reactance, conductance=conductance,
            susceptance=susceptance, turns_ratio=turns_ratio,
            shift_angle=shift_angle, long_term=long_term, short_term=short_term,
            emergency=emergency, min_diff_angle=min_diff_angle,
            max_diff_angle=max_diff_angle,
        )
        branch = self.branch
        param = branch.parameter
        idx = branch.index(label)

        status_old = branch.layout.status[idx]
        status_new = status_old if status is None else check_status(status)

        r = param.resistance[idx] if resistance is None else resistance
        x = param.reactance[idx] if reactance is None else reactance
        if r == 0.0 and x == 0.0:
            raise StructureError("At least one of resistance or reactance is required.")
        if status_new == 1 and x == 0.0 and not self.model.dc.is_empty:
            raise StructureError("The DC model requires a nonzero reactance for an in-service branch.")

        dc_changed = reactance is not None or turns_ratio is not None
        shift_changed = shift_angle is not None
        pi_changed = dc_changed or shift_changed or any(
            value is not None for value in (resistance, conductance, susceptance)
        )

        ac = self.model.ac
        dc = self.model.dc
        ac_built = not ac.is_empty
        dc_built = not dc.is_empty

        # Phase 1: remove the old contribution
        if ac_built and status_old == 1 and (status_new == 0 or pi_changed):
            ac_nodal_update(self, idx, sign=-1.0)
            ac_set_zeros(ac, idx)

        dc_remove = dc_built and status_old == 1 and (
            status_new == 0 or dc_changed or shift_changed
        )
        if dc_remove:
            dc_shift_update(self, idx, sign=-1.0)
            if status_new == 0 or dc_changed:
                dc_nodal_update(self, idx, sign=-1.0)
            dc.admittance[idx] = 0.0

        if status_new != status_old:
            branch.layout.in_service += 1 if status_new == 1 else -1
        branch.layout.status[idx] = status_new

        if pi_changed:
            if resistance is not None:
                param.resistance[idx] = resistance
            if reactance is not None:
                param.reactance[idx] = reactance
            if conductance is not None:
                param.conductance[idx] = conductance
            if susceptance is not None:
                param.susceptance[idx] = susceptance
            if turns_ratio is not None:
                param.turns_ratio[idx] = turns_ratio
            if shift_angle is not None:
                param.shift_angle[idx] = shift_angle
            if ac_built:
                ac.transformer_ratio[idx] = pi_model(self, idx)[5]

        # Phase 2: add the new contribution
        if ac_built and status_new == 1 and (status_old == 0 or pi_changed):
            ac_parameter_update(self, idx)
            ac_nodal_update(self, idx)

        if dc_built and status_new == 1 and (status_old == 0 or dc_changed or shift_changed):
            dc.admittance[idx] = dc_admittance(self, idx)
            dc_shift_update(self, idx)
            if status_old == 0 or dc_changed:
                dc_nodal_update(self, idx)

        if long_term is not None:
            branch.rating.long_term[idx] = long_term
        if short_term is not None:
            branch.rating.short_term[idx] = short_term
        if emergency is not None:
            branch.rating.emergency[idx] = emergency
        if min_diff_angle is not None:
            branch.voltage.min_diff_angle[idx] = min_diff_angle
        if max_diff_angle is not None:
            branch.voltage.max_diff_angle[idx] = max_diff_angle

        return idx

    def set_branch_status(self, label: Label, status: int) -> int:
        return self.update_branch(label, status=status)

    # ------------------------------------------------------------------
    # Generator
    # ------------------------------------------------------------------

    def add_generator(
        self,
        bus: Label,
        label: Label | None = None,
        status: int = 1,
        active: float = 0.0,
        reactive: float = 0.0,
        magnitude: float = 1.0,
        min_active: float = 0.0,
        max_active: float = math.inf,
        min_reactive: float = -math.inf,
        max_reactive: float = math.inf,
        area: int = 1,
    ) -> int:
        """Append a generator and return its dense index.

        An in-service generator adds its output to the host bus supply and
        turns a demand bus into a generator bus.
        """
        (
            active, reactive, magnitude, min_active, max_active, min_reactive,
            max_reactive,
        ) = _numbers(
            active=active, reactive=reactive, magnitude=magnitude,
            min_active=min_active, max_active=max_active, min_reactive=min_reactive,
            max_reactive=max_reactive,
        )
        generator = self.generator
        key = generator.label.new_key(label)
        bus_idx = self.bus.index(bus)
        status = check_status(status)

        idx = generator.label.register(key)
        generator.layout.bus.append(bus_idx)
        generator.layout.status.append(status)
        generator.layout.area.append(area)
        generator.output.active.append(active)
        generator.output.reactive.append(reactive)
        generator.voltage.magnitude.append(magnitude)
        generator.capability.min_active.append(min_active)
        generator.capability.max_active.append(max_active)
        generator.capability.min_reactive.append(min_reactive)
        generator.capability.max_reactive.append(max_reactive)

        if status == 1:
            supply = self.bus.supply
            supply.active[bus_idx] += generator.output.active[idx]
            supply.reactive[bus_idx] += generator.output.reactive[idx]
            insort(supply.generator[bus_idx], idx)
            generator.layout.in_service += 1
            self._promote_bus(bus_idx)

        return idx

    def _promote_bus(self, bus_idx: int) -> None:
        """Turn a demand bus into a generator bus once it hosts a generator."""
        if self.bus.layout.type[bus_idx] == BusType.PQ:
            self.change_bus_type(bus_idx, BusType.PV)
            logger.info(
                "Bus %s hosts an in-service generator and becomes a generator bus.",
                self.bus.label.labels()[bus_idx],
                extra={"bus": self.bus.label.labels()[bus_idx]},
            )

    def update_generator(
        self,
        label: Label,
        status: int | None = None,
        active: float | None = None,
        reactive: float | None = None,
        magnitude: float | None = None,
        min_active: float | None = None,
        max_active: float | None = None,
        min_reactive: float | None = None,
        max_reactive: float | None = None,
        area: int | None = None,
    ) -> int:
        """Update a generator and return its index.

        Output and status changes subtract the old contribution from the
        host bus supply and add the new one.

        Taking the last in-service generator of a generator or slack bus out
        of service bumps the bus type pattern, which invalidates AC solvers
        set up on the previous bus roles.
        """
        (
            active, reactive, magnitude, min_active, max_active, min_reactive,
            max_reactive,
        ) = _numbers(
            active=active, reactive=reactive, magnitude=magnitude,
            min_active=min_active, max_active=max_active, min_reactive=min_reactive,
            max_reactive=max_reactive,
        )
        generator = self.generator
        supply = self.bus.supply
        idx = generator.index(label)
        bus_idx = generator.layout.bus[idx]

        status_old = generator.layout.status[idx]
        status_new = status_old if status is None else check_status(status)
        output = active is not None or reactive is not None

        if status_old == 1:
            if status_new == 0 or output:
                supply.active[bus_idx] -= generator.output.active[idx]
                supply.reactive[bus_idx] -= generator.output.reactive[idx]
            if status_new == 0:
                generator.layout.in_service -= 1
                supply.generator[bus_idx].remove(idx)
                if not supply.generator[bus_idx] and self.bus.layout.type[bus_idx] != BusType.PQ:
                    # The bus no longer regulates its voltage at the next set-up
                    self.bus.layout.pattern += 1

        if active is not None:
            generator.output.active[idx] = active
        if reactive is not None:
            generator.output.reactive[idx] = reactive

        if status_new == 1:
            if status_old == 0 or output:
                supply.active[bus_idx] += generator.output.active[idx]
                supply.reactive[bus_idx] += generator.output.reactive[idx]
            if status_old == 0:
                generator.layout.in_service += 1
                insort(supply.generator[bus_idx], idx)
                self._promote_bus(bus_idx)

        generator.layout.status[idx] = status_new

        if magnitude is not None:
            generator.voltage.magnitude[idx] = magnitude
        if min_active is not None:
            generator.capability.min_active[idx] = min_active
        if max_active is not None:
            generator.capability.max_active[idx] = max_active
        if min_reactive is not None:
            generator.capability.min_reactive[idx] = min_reactive
        if max_reactive is not None:
            generator.capability.max_reactive[idx] = max_reactive
        if area is not None:
            generator.layout.area[idx] = area

        return idx

    def set_generator_status(self, label: Label, status: int) -> int:
        return self.update_generator(label, status=status)

