"""Measurement conformity derivation and test result aggregation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable

from .. import models

# purpose: derive deviations and verdicts server-side before every measurement persist
# status: active

CRITICAL_THRESHOLD = int(os.getenv("CRITICAL_THRESHOLD", "3"))


@dataclass(frozen=True)
class MeasurementVerdict:
    """Derived fields of one measurement."""

    deviation_abs: float | None
    deviation_pct: float | None
    is_conform: bool | None


def derive_measurement(
    measured_value: float | None,
    reference_value: float | None = None,
    tolerance_min: float | None = None,
    tolerance_max: float | None = None,
) -> MeasurementVerdict:
    """Compute deviation and verdict for a raw reading.

    The verdict stays ``None`` unless both tolerance bounds and the measured
    value are known.
    """

    deviation_abs = None
    deviation_pct = None
    if measured_value is not None and reference_value is not None:
        deviation_abs = measured_value - reference_value
        if reference_value != 0:
            deviation_pct = round(deviation_abs / reference_value * 100, 2)
        else:
            deviation_pct = 0.0

    is_conform = None
    if measured_value is not None and tolerance_min is not None and tolerance_max is not None:
        is_conform = tolerance_min <= measured_value <= tolerance_max

    return MeasurementVerdict(deviation_abs, deviation_pct, is_conform)


def apply_derivation(measurement: models.Measurement) -> MeasurementVerdict:
    """Overwrite the derived columns of ``measurement`` from its raw fields."""

    verdict = derive_measurement(
        measurement.measured_value,
        measurement.reference_value,
        measurement.tolerance_min,
        measurement.tolerance_max,
    )
    measurement.deviation_abs = verdict.deviation_abs
    measurement.deviation_pct = verdict.deviation_pct
    measurement.is_conform = verdict.is_conform
    return verdict


def effective_criticality(measurement: models.Measurement) -> int:
    if measurement.checklist_item is not None:
        return measurement.checklist_item.criticality
    return measurement.criticality or 1


def is_critical(criticality: int | None) -> bool:
    return (criticality or 0) >= CRITICAL_THRESHOLD


def aggregate_result(measurements: Iterable[models.Measurement]) -> models.TestResult:
    applicable = [m for m in measurements if m.is_conform is not None]
    if not applicable:
        return models.TestResult.NON_APPLICABLE
    failed = [m for m in applicable if not m.is_conform]
    if not failed:
        return models.TestResult.CONFORME
    if any(is_critical(effective_criticality(m)) for m in failed):
        return models.TestResult.NON_CONFORME
    return models.TestResult.PARTIEL


def conformity_rate(measurements: Iterable[models.Measurement]) -> float:
    measurements = list(measurements)
    if not measurements:
        return 0.0
    conforming = sum(1 for m in measurements if m.is_conform)
    return round(conforming / len(measurements) * 100, 2)


def missing_mandatory_items(test: models.IndustrialTest) -> list[models.ChecklistItem]:
    answered = {m.checklist_item_id for m in test.measurements if m.checklist_item_id is not None}
    return [
        item
        for item in test.test_type.checklist_items
        if item.mandatory and item.id not in answered
    ]
