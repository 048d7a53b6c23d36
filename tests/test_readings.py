import pytest

import readings
from errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def priced(set_price):
    set_price("petrol", 100, "2026-01-01")
    set_price("diesel", 90, "2026-01-01")


def test_first_reading_starts_from_initial_meter(priced, record):
    r = record("NZ-2", 1040, "2026-01-05")
    assert r.is_initial_reading is True
    assert r.previous_meter_value == 1000
    assert r.litres_sold == 40
    assert r.price_per_litre == 90
    assert r.total_amount == 3600
    assert r.payment.to_dict() == {"cash": 3600, "online": 0.0, "credit": 0.0}


def test_meter_chain(priced, record):
    record("NZ-1", 100, "2026-01-05")
    r = record("NZ-1", 162.5, "2026-01-06")
    assert r.is_initial_reading is False
    assert r.previous_meter_value == 100
    assert r.litres_sold == 62.5
    assert r.total_amount == 6250


def test_meter_going_backwards_rejected(priced, record):
    record("NZ-1", 100, "2026-01-05")
    with pytest.raises(ValidationError) as exc:
        record("NZ-1", 99.9, "2026-01-06")
    assert exc.value.kind == "negative_litres"
    assert exc.value.details == {"previousMeterValue": 100.0}


def test_same_day_reading_is_conflict(priced, record, repo):
    record("NZ-1", 100, "2026-01-05")
    with pytest.raises(ConflictError) as exc:
        record("NZ-1", 150, "2026-01-05")
    assert exc.value.kind == "duplicate_reading"
    _, pagination = readings.list_readings(repo, nozzle_id="NZ-1")
    assert pagination["total"] == 1


def test_back_dated_reading_rejected(priced, record):
    record("NZ-1", 100, "2026-01-05")
    with pytest.raises(ValidationError) as exc:
        record("NZ-1", 150, "2026-01-04")
    assert exc.value.kind == "out_of_order"


def test_no_price_configured_rejects_reading(record, repo):
    with pytest.raises(ValidationError) as exc:
        record("NZ-1", 100, "2026-01-05")
    assert exc.value.kind == "price_not_configured"
    assert repo.latest_reading("NZ-1") is None


def test_price_is_captured_at_write_time(priced, record, set_price, repo):
    r = record("NZ-1", 100, "2026-01-05")
    set_price("petrol", 110, "2026-01-05T00:00:00")
    stored = readings.get_reading(repo, r.id)
    assert stored.price_per_litre == 100
    assert stored.total_amount == 10000


def test_inactive_nozzle_and_foreign_employee(priced, record):
    with pytest.raises(ValidationError) as exc:
        record("NZ-3", 10, "2026-01-05")
    assert exc.value.kind == "nozzle_inactive"

    with pytest.raises(ValidationError) as exc:
        record("NZ-1", 10, "2026-01-05", employee_id="EMP-C")
    assert exc.value.kind == "employee_station_mismatch"

    with pytest.raises(NotFoundError):
        record("NZ-404", 10, "2026-01-05")
    with pytest.raises(NotFoundError):
        record("NZ-1", 10, "2026-01-05", employee_id="EMP-404")


def test_payment_split_must_match_total(priced, record):
    r = record("NZ-1", 10, "2026-01-05", payment_allocation={"cash": 400, "online": 350, "credit": 250})
    assert r.payment.to_dict() == {"cash": 400, "online": 350, "credit": 250}

    with pytest.raises(ValidationError) as exc:
        record("NZ-1", 20, "2026-01-06", payment_allocation={"cash": 500, "online": 400})
    assert exc.value.kind == "payment_mismatch"
    assert exc.value.details == {"expected": 1000.0, "received": 900.0}


def test_payment_split_tolerates_one_paisa(priced, record):
    r = record("NZ-1", 10, "2026-01-05", payment_allocation={"cash": 999.99})
    assert r.payment.cash == 999.99


@pytest.mark.parametrize("allocation, kind", [
    ({"cash": 1000, "cheque": 0}, "invalid_payment"),
    ({"cash": 1100, "online": -100}, "invalid_amount"),
    ([1000], "invalid_payment"),
])
def test_bad_payment_allocation(priced, record, allocation, kind):
    with pytest.raises(ValidationError) as exc:
        record("NZ-1", 10, "2026-01-05", payment_allocation=allocation)
    assert exc.value.kind == kind


def test_sample_reading_moves_the_meter(priced, record):
    record("NZ-1", 100, "2026-01-05")
    sample = record("NZ-1", 101, "2026-01-06", is_sample=True)
    assert sample.is_sample is True
    nxt = record("NZ-1", 150, "2026-01-07")
    assert nxt.previous_meter_value == 101


def test_reading_date_uses_station_zone(priced, record):
    r = record("NZ-1", 10, "2026-01-05T20:00:00Z", tz_name="Asia/Kolkata")
    assert r.reading_date == "2026-01-06"


def test_previous_reading(priced, record, repo):
    empty = readings.previous_reading(repo, "NZ-2", "2026-01-05")
    assert empty["hasReadings"] is False
    assert empty["previousReading"] == 1000
    assert empty["currentPrice"] == 90

    record("NZ-1", 100, "2026-01-05")
    record("NZ-1", 180, "2026-01-08")
    info = readings.previous_reading(repo, "NZ-1", "2026-01-08")
    assert info["previousReading"] == 100
    assert info["previousDate"] == "2026-01-05"
    assert info["nozzle"]["number"] == 1


def test_list_readings_paginates(priced, record, repo):
    for day, meter in enumerate([10, 20, 30, 40, 50], start=1):
        record("NZ-1", meter, f"2026-01-0{day}")
    record("NZ-B1", 5, "2026-01-02", employee_id="EMP-C")

    rows, pagination = readings.list_readings(repo, station_id="STN-A", page=2, limit=2)
    assert pagination == {"page": 2, "limit": 2, "total": 5, "totalPages": 3}
    assert [r.reading_date for r in rows] == ["2026-01-03", "2026-01-02"]

    rows, _ = readings.list_readings(repo, start_date="2026-01-02", end_date="2026-01-02")
    assert {r.nozzle_id for r in rows} == {"NZ-1", "NZ-B1"}

    with pytest.raises(ValidationError):
        readings.list_readings(repo, limit=10000)
