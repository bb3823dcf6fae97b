import pytest

from conformity import models
from conformity.services import conformity


@pytest.mark.parametrize(
    "measured, low, high, expected",
    [
        (100.0, 98.0, 102.0, True),
        (98.0, 98.0, 102.0, True),
        (102.0, 98.0, 102.0, True),
        (97.99, 98.0, 102.0, False),
        (105.0, 98.0, 102.0, False),
    ],
)
def test_verdict_is_tolerance_window(measured, low, high, expected):
    verdict = conformity.derive_measurement(measured, 100.0, low, high)
    assert verdict.is_conform is expected


def test_verdict_undetermined_without_both_bounds():
    assert conformity.derive_measurement(5.0, 4.0, None, 6.0).is_conform is None
    assert conformity.derive_measurement(5.0, 4.0, 4.0, None).is_conform is None
    assert conformity.derive_measurement(None, 4.0, 4.0, 6.0).is_conform is None


def test_deviation_against_reference():
    verdict = conformity.derive_measurement(105.0, 100.0, 98.0, 102.0)
    assert verdict.deviation_abs == 5.0
    assert verdict.deviation_pct == 5.0

    verdict = conformity.derive_measurement(1.0, 3.0)
    assert verdict.deviation_abs == -2.0
    assert verdict.deviation_pct == round(-2.0 / 3.0 * 100, 2)


def test_zero_reference_gives_zero_percentage():
    verdict = conformity.derive_measurement(0.4, 0.0)
    assert verdict.deviation_abs == 0.4
    assert verdict.deviation_pct == 0


def test_no_reference_leaves_deviation_empty():
    verdict = conformity.derive_measurement(12.0, None, 10.0, 15.0)
    assert verdict.deviation_abs is None
    assert verdict.deviation_pct is None
    assert verdict.is_conform is True


def test_apply_derivation_overwrites_caller_values():
    measurement = models.Measurement(
        parameter="Pression",
        measured_value=105.0,
        reference_value=100.0,
        tolerance_min=98.0,
        tolerance_max=102.0,
        deviation_abs=0.0,
        deviation_pct=0.0,
        is_conform=True,
    )
    conformity.apply_derivation(measurement)
    assert measurement.is_conform is False
    assert measurement.deviation_abs == 5.0
    assert measurement.deviation_pct == 5.0


def _reading(is_conform, criticality=1):
    return models.Measurement(parameter="p", measured_value=1.0, is_conform=is_conform, criticality=criticality)


def test_aggregate_all_conform():
    readings = [_reading(True), _reading(True, 4), _reading(None)]
    assert conformity.aggregate_result(readings) == models.TestResult.CONFORME


def test_aggregate_critical_failure():
    readings = [_reading(True), _reading(False, 3)]
    assert conformity.aggregate_result(readings) == models.TestResult.NON_CONFORME


def test_aggregate_minor_failure_only():
    readings = [_reading(True), _reading(False, 2), _reading(False, 1)]
    assert conformity.aggregate_result(readings) == models.TestResult.PARTIEL


def test_aggregate_without_applicable_measurements():
    assert conformity.aggregate_result([]) == models.TestResult.NON_APPLICABLE
    assert conformity.aggregate_result([_reading(None)]) == models.TestResult.NON_APPLICABLE


def test_checklist_item_criticality_takes_precedence():
    item = models.ChecklistItem(label="Pression", criticality=4, mandatory=True)
    reading = _reading(False, 1)
    reading.checklist_item = item
    assert conformity.effective_criticality(reading) == 4
    assert conformity.aggregate_result([reading]) == models.TestResult.NON_CONFORME


def test_conformity_rate():
    readings = [_reading(True), _reading(False), _reading(None)]
    assert conformity.conformity_rate(readings) == 33.33
    assert conformity.conformity_rate([]) == 0.0
