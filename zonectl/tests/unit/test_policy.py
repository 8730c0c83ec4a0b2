"""Unit tests for zonectl.core.policy.decide and its helpers."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from zonectl.core.bookkeeping import RuntimeBookkeeping
from zonectl.core.exceptions import InvalidReading, PolicyViolation
from zonectl.core.policy import (
    NO_OVERRIDE,
    Advisory,
    ManualOverride,
    Reading,
    decide,
    enforce_safety,
    validate_temperature,
)
from zonectl.models.enums import OperatingMode, SystemMode
from zonectl.models.schemas import ActiveHours, DefrostOptions, HvacOptions

NOW = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _book(mode: OperatingMode, *, entered_ago: timedelta = timedelta(hours=1)) -> RuntimeBookkeeping:
    return RuntimeBookkeeping.start(mode, NOW - entered_ago)


def _reading(indoor: float | None, outdoor: float | None = 5.0) -> Reading:
    return Reading(indoor_temp=indoor, outdoor_temp=outdoor, observed_at=NOW)


def _override(mode: OperatingMode, temperature: float | None = None, **kwargs: object) -> ManualOverride:
    return ManualOverride(active=True, mode=mode, temperature=temperature, **kwargs)  # type: ignore[arg-type]


# ===================================================================
# Scenarios
# ===================================================================


class TestScenarios:
    def test_cold_indoor_starts_heating_at_configured_target(self, options: HvacOptions) -> None:
        decision = decide(_reading(17.0), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW)

        assert decision.mode == OperatingMode.heating
        assert decision.target_temperature == 22.0
        assert "heating low threshold" in decision.reasoning

    def test_heating_stops_above_high_threshold(self, options: HvacOptions) -> None:
        decision = decide(_reading(23.0), NO_OVERRIDE, _book(OperatingMode.heating), options, now=NOW)

        assert decision.mode == OperatingMode.idle
        assert decision.target_temperature is None

    def test_cooling_override_blocked_when_outdoor_too_cold(self, options: HvacOptions) -> None:
        decision = decide(
            _reading(22.0, outdoor=5.0),
            _override(OperatingMode.cooling, 20.0),
            _book(OperatingMode.idle),
            options,
            now=NOW,
        )

        assert decision.mode == OperatingMode.idle
        assert decision.safety_blocked is True
        assert "manual override: cooling" in decision.reasoning
        assert "safety" in decision.reasoning


# ===================================================================
# Hysteresis
# ===================================================================


class TestHysteresis:
    def test_dead_band_keeps_idle(self, options: HvacOptions) -> None:
        decision = decide(_reading(20.0), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW)
        assert decision.mode == OperatingMode.idle
        assert "hysteresis band" in decision.reasoning

    def test_heating_continues_inside_band(self, options: HvacOptions) -> None:
        decision = decide(_reading(20.0), NO_OVERRIDE, _book(OperatingMode.heating), options, now=NOW)
        assert decision.mode == OperatingMode.heating
        assert "continuing heating" in decision.reasoning

    def test_hot_indoor_starts_cooling(self, options: HvacOptions) -> None:
        decision = decide(
            _reading(26.0, outdoor=30.0), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW
        )
        assert decision.mode == OperatingMode.cooling
        assert decision.target_temperature == 24.0

    def test_cooling_stops_at_low_threshold(self, options: HvacOptions) -> None:
        decision = decide(
            _reading(23.4, outdoor=30.0), NO_OVERRIDE, _book(OperatingMode.cooling), options, now=NOW
        )
        assert decision.mode == OperatingMode.idle

    def test_system_mode_off_always_off(self, make_options: Callable[..., HvacOptions]) -> None:
        options = make_options(system_mode=SystemMode.off)
        decision = decide(_reading(10.0), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW)
        assert decision.mode == OperatingMode.off
        assert decision.reasoning == "system mode is off"

    def test_cool_only_never_heats(self, make_options: Callable[..., HvacOptions]) -> None:
        options = make_options(system_mode=SystemMode.cool_only)
        decision = decide(_reading(15.0), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW)
        assert decision.mode == OperatingMode.idle

    def test_missing_reading_holds_current_mode(self, options: HvacOptions) -> None:
        decision = decide(
            _reading(None), NO_OVERRIDE, _book(OperatingMode.heating), options, now=NOW
        )
        assert decision.mode == OperatingMode.heating
        assert decision.held is True
        assert "awaiting indoor reading" in decision.reasoning

    def test_outside_active_hours_idles(self, make_options: Callable[..., HvacOptions]) -> None:
        options = make_options(active_hours=ActiveHours(start=12, start_weekday=12, end=20))
        decision = decide(_reading(15.0), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW)
        assert decision.mode == OperatingMode.idle
        assert "outside active hours" in decision.reasoning


# ===================================================================
# Safety
# ===================================================================


class TestSafety:
    @pytest.mark.parametrize("indoor", [23.0, 23.5, 25.0, 30.0, 45.0])
    @pytest.mark.parametrize(
        "current", [OperatingMode.idle, OperatingMode.heating, OperatingMode.cooling]
    )
    def test_never_heats_at_or_above_target_plus_margin(
        self, options: HvacOptions, indoor: float, current: OperatingMode
    ) -> None:
        for override in (NO_OVERRIDE, _override(OperatingMode.heating, 22.0)):
            decision = decide(_reading(indoor), override, _book(current), options, now=NOW)
            assert decision.mode != OperatingMode.heating

    def test_heating_blocked_on_hot_outdoor(self, options: HvacOptions) -> None:
        decision = decide(
            _reading(17.0, outdoor=31.0), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW
        )
        assert decision.mode == OperatingMode.idle
        assert decision.safety_blocked is True
        assert "hot-outdoor ceiling" in decision.reasoning

    def test_blocked_candidate_falls_back_to_safe_current_mode(self, options: HvacOptions) -> None:
        # heating is still safe at 20 °C, the requested cooling is not (outdoor 5 °C)
        decision = decide(
            _reading(20.0),
            _override(OperatingMode.cooling, 24.0),
            _book(OperatingMode.heating),
            options,
            now=NOW,
        )
        assert decision.mode == OperatingMode.heating
        assert decision.held is True

    def test_enforce_safety_raises_policy_violation(self, options: HvacOptions) -> None:
        with pytest.raises(PolicyViolation, match="heating blocked"):
            enforce_safety(OperatingMode.heating, 22.0, indoor=23.0, outdoor=5.0, options=options)

    def test_enforce_safety_ignores_idle(self, options: HvacOptions) -> None:
        enforce_safety(OperatingMode.idle, None, indoor=40.0, outdoor=40.0, options=options)

    def test_override_target_is_clamped(self, options: HvacOptions) -> None:
        decision = decide(
            _reading(15.0),
            _override(OperatingMode.heating, 30.0),
            _book(OperatingMode.idle),
            options,
            now=NOW,
        )
        assert decision.mode == OperatingMode.heating
        assert decision.target_temperature == 26.0


# ===================================================================
# Manual override
# ===================================================================


class TestOverride:
    def test_override_beats_threshold_crossing(self, options: HvacOptions) -> None:
        # 22.5 °C would end heating automatically; the override keeps it on
        decision = decide(
            _reading(22.5),
            _override(OperatingMode.heating, 23.0),
            _book(OperatingMode.heating),
            options,
            now=NOW,
        )
        assert decision.mode == OperatingMode.heating
        assert decision.target_temperature == 23.0
        assert decision.reasoning.startswith("manual override: heating")

    def test_expired_override_is_ignored(self, options: HvacOptions) -> None:
        expired = _override(OperatingMode.heating, 23.0, expires_at=NOW - timedelta(seconds=1))
        decision = decide(_reading(20.0), expired, _book(OperatingMode.idle), options, now=NOW)
        assert decision.mode == OperatingMode.idle

    def test_override_off(self, options: HvacOptions) -> None:
        decision = decide(
            _reading(15.0), _override(OperatingMode.off), _book(OperatingMode.idle), options, now=NOW
        )
        assert decision.mode == OperatingMode.off


# ===================================================================
# Duty cycle
# ===================================================================


class TestDutyCycle:
    def test_min_run_time_holds_active_mode(self, make_options: Callable[..., HvacOptions]) -> None:
        options = make_options(min_run_time_seconds=300)
        book = _book(OperatingMode.heating, entered_ago=timedelta(seconds=60))

        decision = decide(_reading(22.2), NO_OVERRIDE, book, options, now=NOW)

        assert decision.mode == OperatingMode.heating
        assert decision.held is True
        assert "duty cycle" in decision.reasoning

    def test_safety_forced_exit_ignores_min_run_time(
        self, make_options: Callable[..., HvacOptions]
    ) -> None:
        options = make_options(min_run_time_seconds=300)
        book = _book(OperatingMode.heating, entered_ago=timedelta(seconds=60))

        decision = decide(_reading(23.5), NO_OVERRIDE, book, options, now=NOW)

        assert decision.mode == OperatingMode.idle

    def test_cycle_limit_blocks_new_start(self, make_options: Callable[..., HvacOptions]) -> None:
        options = make_options(max_cycles_per_hour=2)
        book = _book(OperatingMode.idle)
        book.modes[OperatingMode.heating].cycles_this_hour = 2

        decision = decide(_reading(17.0), NO_OVERRIDE, book, options, now=NOW)

        assert decision.mode == OperatingMode.idle
        assert "already started 2 time(s)" in decision.reasoning


# ===================================================================
# Defrost
# ===================================================================


class TestDefrost:
    @pytest.fixture
    def defrost_options(self, make_options: Callable[..., HvacOptions]) -> HvacOptions:
        return make_options(
            defrost=DefrostOptions(
                enabled=True, temperature_threshold=0.0, period_seconds=3600, duration_seconds=300
            )
        )

    def test_enters_defrost_after_heating_period(self, defrost_options: HvacOptions) -> None:
        book = _book(OperatingMode.heating)
        book.heating_runtime_since_defrost = timedelta(seconds=3600)

        decision = decide(_reading(19.0, outdoor=-5.0), NO_OVERRIDE, book, defrost_options, now=NOW)

        assert decision.mode == OperatingMode.defrosting
        assert "icing risk" in decision.reasoning

    def test_no_defrost_when_outdoor_warm(self, defrost_options: HvacOptions) -> None:
        book = _book(OperatingMode.heating)
        book.heating_runtime_since_defrost = timedelta(hours=5)

        decision = decide(_reading(19.0, outdoor=3.0), NO_OVERRIDE, book, defrost_options, now=NOW)

        assert decision.mode == OperatingMode.heating

    def test_defrost_runs_for_configured_duration(self, defrost_options: HvacOptions) -> None:
        book = _book(OperatingMode.defrosting, entered_ago=timedelta(seconds=120))

        decision = decide(_reading(19.0, outdoor=-5.0), NO_OVERRIDE, book, defrost_options, now=NOW)

        assert decision.mode == OperatingMode.defrosting
        assert decision.target_temperature == 22.0

    def test_defrost_complete_resumes_heating(self, defrost_options: HvacOptions) -> None:
        book = _book(OperatingMode.defrosting, entered_ago=timedelta(seconds=301))

        decision = decide(_reading(19.0, outdoor=-5.0), NO_OVERRIDE, book, defrost_options, now=NOW)

        assert decision.mode == OperatingMode.heating
        assert decision.reasoning.startswith("defrost complete")


# ===================================================================
# Advisory hints
# ===================================================================


class TestAdvisory:
    def test_target_hint_replaces_configured_target(self, options: HvacOptions) -> None:
        decision = decide(
            _reading(17.0),
            NO_OVERRIDE,
            _book(OperatingMode.idle),
            options,
            now=NOW,
            advisory=Advisory(target_temperature=20.5, source="schedule"),
        )
        assert decision.target_temperature == 20.5
        assert decision.conditions["advisory"]["source"] == "schedule"

    def test_mode_hint_only_applies_in_dead_band(self, options: HvacOptions) -> None:
        hint = Advisory(mode=OperatingMode.heating, source="schedule")
        decision = decide(
            _reading(20.0), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW, advisory=hint
        )
        assert decision.mode == OperatingMode.heating
        assert "schedule suggests heating" in decision.reasoning


# ===================================================================
# Validation
# ===================================================================


class TestValidation:
    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, "21", True, 500.0])
    def test_invalid_values_raise(self, value: object) -> None:
        with pytest.raises(InvalidReading):
            validate_temperature(value, kind="indoor")

    def test_none_means_unknown(self) -> None:
        assert validate_temperature(None, kind="indoor") is None

    def test_decide_raises_on_nan(self, options: HvacOptions) -> None:
        with pytest.raises(InvalidReading, match="not finite"):
            decide(_reading(math.nan), NO_OVERRIDE, _book(OperatingMode.idle), options, now=NOW)
