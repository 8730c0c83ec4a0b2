"""Fan a mode decision out to every zone entity and aggregate the outcomes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from zonectl.core.exceptions import DispatchFailure
from zonectl.models.enums import HVACMode, OperatingMode
from zonectl.models.schemas import ZoneEntity

logger = logging.getLogger(__name__)


class ClimateCommandSink(Protocol):
    """Subset of ``HAClient`` the dispatcher relies on."""

    async def set_hvac_mode(self, entity_id: str, mode: str) -> object: ...

    async def set_temperature(
        self, entity_id: str, temperature: float, *, hvac_mode: str | None = None
    ) -> object: ...

    async def set_preset_mode(self, entity_id: str, preset_mode: str) -> object: ...


@dataclass(frozen=True, slots=True)
class ZoneCommand:
    zone_id: str
    hvac_mode: HVACMode
    target_temperature: float | None = None
    preset_mode: str | None = None


@dataclass(frozen=True, slots=True)
class ZoneOutcome:
    zone_id: str
    success: bool
    command: ZoneCommand
    error: str | None = None


@dataclass(frozen=True, slots=True)
class DispatchResult:
    per_zone: tuple[ZoneOutcome, ...] = ()

    @property
    def all_succeeded(self) -> bool:
        return all(outcome.success for outcome in self.per_zone)

    @property
    def failed(self) -> tuple[ZoneOutcome, ...]:
        return tuple(outcome for outcome in self.per_zone if not outcome.success)

    def error(self) -> DispatchFailure | None:
        return None if self.all_succeeded else DispatchFailure(self)


class EquipmentDispatcher:
    """Issue one command per zone; zones never block or roll back each other."""

    def __init__(
        self,
        client: ClimateCommandSink,
        *,
        heating_preset: str | None = None,
        cooling_preset: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._heating_preset = heating_preset
        self._cooling_preset = cooling_preset
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def build_commands(
        self,
        mode: OperatingMode,
        target_temperature: float | None,
        zones: Iterable[ZoneEntity],
    ) -> list[ZoneCommand]:
        commands: list[ZoneCommand] = []
        for zone in zones:
            if mode == OperatingMode.heating or (
                mode == OperatingMode.defrosting and not zone.defrost
            ):
                commands.append(
                    ZoneCommand(zone.id, HVACMode.HEAT, target_temperature, self._heating_preset)
                )
            elif mode == OperatingMode.cooling:
                commands.append(
                    ZoneCommand(zone.id, HVACMode.COOL, target_temperature, self._cooling_preset)
                )
            else:
                # idle, off, and defrost-capable units during a defrost cycle
                commands.append(ZoneCommand(zone.id, HVACMode.OFF))
        return commands

    async def apply(
        self,
        mode: OperatingMode,
        target_temperature: float | None,
        zones: Sequence[ZoneEntity],
    ) -> DispatchResult:
        """Command every enabled zone into *mode*."""

        enabled = [zone for zone in zones if zone.enabled]
        skipped = len(zones) - len(enabled)
        if skipped:
            logger.debug("Skipping %d disabled zone(s)", skipped)
        return await self.send(self.build_commands(mode, target_temperature, enabled))

    async def all_off(self, zones: Sequence[ZoneEntity]) -> DispatchResult:
        """Terminal safety action: switch off every configured zone, disabled ones included."""

        logger.info("Commanding all %d zone(s) off", len(zones))
        return await self.send([ZoneCommand(zone.id, HVACMode.OFF) for zone in zones])

    async def send(self, commands: Sequence[ZoneCommand]) -> DispatchResult:
        outcomes = await asyncio.gather(*(self._send_one(command) for command in commands))
        result = DispatchResult(per_zone=tuple(outcomes))
        if result.all_succeeded:
            logger.info("Dispatched %d command(s)", len(outcomes))
        else:
            logger.warning(
                "Dispatch incomplete: %d of %d zone(s) failed (%s)",
                len(result.failed),
                len(outcomes),
                ", ".join(f"{o.zone_id}: {o.error}" for o in result.failed),
            )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _send_one(self, command: ZoneCommand) -> ZoneOutcome:
        try:
            await asyncio.wait_for(self._execute(command), timeout=self._timeout)
        except TimeoutError:
            return ZoneOutcome(
                command.zone_id, False, command, f"timed out after {self._timeout:.1f}s"
            )
        except Exception as exc:
            logger.debug("Command for %s failed", command.zone_id, exc_info=True)
            return ZoneOutcome(command.zone_id, False, command, str(exc) or type(exc).__name__)
        return ZoneOutcome(command.zone_id, True, command)

    async def _execute(self, command: ZoneCommand) -> None:
        if command.hvac_mode == HVACMode.OFF or command.target_temperature is None:
            await self._client.set_hvac_mode(command.zone_id, command.hvac_mode.value)
        else:
            await self._client.set_temperature(
                command.zone_id,
                command.target_temperature,
                hvac_mode=command.hvac_mode.value,
            )
        if command.preset_mode:
            await self._client.set_preset_mode(command.zone_id, command.preset_mode)


__all__ = [
    "ClimateCommandSink",
    "DispatchResult",
    "EquipmentDispatcher",
    "ZoneCommand",
    "ZoneOutcome",
]
