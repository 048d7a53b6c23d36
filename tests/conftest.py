import pytest

import price_store
import readings
from main import create_app
from persistence import get_repo

SEEDED_AT = "2025-11-30T00:00:00+00:00"


def seed(repo):
    """Two stations; STN-A has a petrol, a diesel and an inactive nozzle plus two employees."""
    repo.create_station({"id": "STN-A", "name": "Highway Fuels", "code": "HF01", "created_at": SEEDED_AT})
    repo.create_station({"id": "STN-B", "name": "City Fuels", "code": "CF01", "created_at": SEEDED_AT})

    for nozzle_id, station_id, number, fuel_type, initial, status in [
        ("NZ-1", "STN-A", 1, "petrol", 0, "active"),
        ("NZ-2", "STN-A", 2, "diesel", 1000, "active"),
        ("NZ-3", "STN-A", 3, "petrol", 0, "inactive"),
        ("NZ-B1", "STN-B", 1, "petrol", 0, "active"),
    ]:
        repo.create_nozzle({
            "id": nozzle_id,
            "station_id": station_id,
            "nozzle_number": number,
            "fuel_type": fuel_type,
            "initial_reading": initial,
            "status": status,
            "created_at": SEEDED_AT,
        })

    for employee_id, station_id, name in [
        ("EMP-A", "STN-A", "Asha"),
        ("EMP-B", "STN-A", "Ravi"),
        ("EMP-C", "STN-B", "Meera"),
    ]:
        repo.create_employee({
            "id": employee_id,
            "station_id": station_id,
            "name": name,
            "role": "employee",
            "created_at": SEEDED_AT,
        })


@pytest.fixture
def repo():
    r = get_repo(":memory:")
    seed(r)
    yield r
    r.close()


@pytest.fixture
def set_price(repo):
    def _set(fuel_type, price, effective_from, station_id="STN-A"):
        return price_store.set_price(repo, station_id, fuel_type, price, effective_from=effective_from)
    return _set


@pytest.fixture
def record(repo):
    def _record(nozzle_id, meter, on, employee_id="EMP-A", **kwargs):
        return readings.record_reading(
            repo,
            nozzle_id=nozzle_id,
            meter_value=meter,
            reading_date=on,
            employee_id=employee_id,
            **kwargs,
        )
    return _record


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "DB_PATH": ":memory:",
        "AUDIT_LOG_PATH": str(tmp_path / "audit.csv"),
        "STATION_TIMEZONE": "Asia/Kolkata",
    })
    seed(app.extensions["fuelsync.repo"])
    yield app
    app.extensions["fuelsync.repo"].close()


@pytest.fixture
def client(app):
    return app.test_client()
