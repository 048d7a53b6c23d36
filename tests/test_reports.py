import pytest

import price_store
import reports
import settlements
from errors import NotFoundError, ValidationError
from report_pdf import build_daily_report_pdf


@pytest.fixture
def three_price_days(set_price, record):
    set_price("petrol", 95, "2025-12-01")
    set_price("petrol", 100, "2025-12-02")
    set_price("petrol", 105, "2025-12-03")
    record("NZ-1", 100, "2025-12-01")
    record("NZ-1", 250, "2025-12-02", employee_id="EMP-B")
    record("NZ-1", 370, "2025-12-03")


def test_revenue_uses_price_of_each_reading_day(repo, three_price_days):
    report = reports.sales_report(repo, "STN-A", "2025-12-01", "2025-12-03")
    assert report["totals"]["totalSales"] == 37100
    assert report["totals"]["totalLitres"] == 370
    assert [(r["group"], r["totalSales"]) for r in report["rows"]] == [
        ("2025-12-01", 9500), ("2025-12-02", 15000), ("2025-12-03", 12600),
    ]
    assert report["rows"][0]["fuelTypeSales"] == [
        {"fuelType": "petrol", "sales": 9500.0, "quantity": 100.0, "readings": 1},
    ]


def test_group_by_employee_and_nozzle(repo, three_price_days):
    by_emp = reports.sales_report(repo, "STN-A", "2025-12-01", "2025-12-03", group_by="employee")
    assert {r["group"]: (r["employeeName"], r["totalSales"]) for r in by_emp["rows"]} == {
        "EMP-A": ("Asha", 22100), "EMP-B": ("Ravi", 15000),
    }

    by_nozzle = reports.sales_report(repo, "all", "2025-12-01", "2025-12-03", group_by="nozzle")
    assert by_nozzle["rows"][0]["nozzleNumber"] == 1
    assert by_nozzle["rows"][0]["readingsCount"] == 3


def test_daily_sales_is_exact_to_the_day(repo, set_price, record):
    set_price("petrol", 100, "2026-01-01")
    record("NZ-1", 10, "2026-01-25")
    record("NZ-1", 30, "2026-01-26T00:00:00")

    day = reports.daily_sales(repo, "STN-A", "2026-01-25")
    assert day["readingsCount"] == 1
    assert day["totalLitres"] == 10
    assert day["totalSaleValue"] == 1000

    nxt = reports.daily_sales(repo, "STN-A", "2026-01-26")
    assert nxt["totalSaleValue"] == 2000


def test_daily_sales_breakdown(repo, set_price, record):
    set_price("petrol", 100, "2026-01-01")
    set_price("diesel", 90, "2026-01-01")
    record("NZ-1", 10, "2026-01-10", payment_allocation={"cash": 600, "online": 400})
    record("NZ-2", 1020, "2026-01-10", employee_id="EMP-B", payment_allocation={"credit": 1800})

    day = reports.daily_sales(repo, "STN-A", "2026-01-10")
    assert day["stationName"] == "Highway Fuels"
    assert day["byFuelType"] == {
        "diesel": {"litres": 20.0, "value": 1800.0, "readings": 1},
        "petrol": {"litres": 10.0, "value": 1000.0, "readings": 1},
    }
    assert day["paymentSplit"] == {"cash": 600.0, "online": 400.0, "credit": 1800.0}
    assert day["expectedCash"] == 600
    assert [r["employeeName"] for r in day["readings"]] == ["Asha", "Ravi"]


def test_samples_and_zero_initial_readings_are_not_sales(repo, set_price, record):
    set_price("petrol", 100, "2026-01-01")
    set_price("diesel", 90, "2026-01-01")
    record("NZ-2", 1000, "2026-01-10")
    record("NZ-1", 5, "2026-01-10", is_sample=True)

    day = reports.daily_sales(repo, "STN-A", "2026-01-10")
    assert day["readingsCount"] == 0
    assert day["totalSaleValue"] == 0
    assert day["byFuelType"] == {}


def test_report_argument_errors(repo):
    with pytest.raises(ValidationError) as exc:
        reports.sales_report(repo, "STN-A", "2026-01-10", "2026-01-01")
    assert exc.value.kind == "invalid_range"

    with pytest.raises(ValidationError) as exc:
        reports.sales_report(repo, "STN-A", "2026-01-01", "2026-01-10", group_by="week")
    assert exc.value.kind == "invalid_group_by"

    with pytest.raises(ValidationError):
        reports.sales_report(repo, "STN-A", "not-a-date", "2026-01-10")

    with pytest.raises(NotFoundError):
        reports.sales_report(repo, ["STN-A", "NOPE"], "2026-01-01", "2026-01-10")


def test_empty_range(repo):
    report = reports.sales_report(repo, "all", "2026-01-01", "2026-01-10")
    assert report["rows"] == []
    assert report["totals"]["totalSales"] == 0
    assert report["stationIds"] == ["STN-B", "STN-A"]


def test_employee_shortfalls_across_days(repo, set_price, record):
    set_price("petrol", 100, "2026-01-01")
    set_price("diesel", 90, "2026-01-01")
    record("NZ-1", 10, "2026-01-10")
    record("NZ-2", 1010, "2026-01-10", employee_id="EMP-B")
    settlements.record_settlement(repo, "STN-A", "2026-01-10", 1700)   # -200, 100 each

    record("NZ-1", 20, "2026-01-11")
    settlements.record_settlement(repo, "STN-A", "2026-01-11", 700)    # -300, all EMP-A

    rows = reports.employee_shortfalls(repo, "all", "2026-01-01", "2026-01-31")
    assert [(r["employeeId"], r["totalShortfall"], r["daysWithShortfall"]) for r in rows] == [
        ("EMP-A", 400, 2), ("EMP-B", 100, 1),
    ]
    assert rows[0]["averagePerDay"] == 200
    assert rows[0]["employeeName"] == "Asha"

    assert reports.employee_shortfalls(repo, "STN-B", "2026-01-01", "2026-01-31") == []


def test_sales_export_frame(repo, three_price_days):
    df = reports.sales_export_frame(repo, "STN-A", "2025-12-01", "2025-12-03")
    assert len(df) == 3
    assert list(df["Sale Value (₹)"]) == [9500.0, 15000.0, 12600.0]
    assert list(df["Employee"]) == ["Asha", "Ravi", "Asha"]


def test_daily_report_pdf(repo, set_price, record):
    set_price("petrol", 100, "2026-01-01")
    record("NZ-1", 10, "2026-01-10")
    result = settlements.record_settlement(repo, "STN-A", "2026-01-10", 900)

    pdf = build_daily_report_pdf(
        station=repo.get_station("STN-A"),
        sales=reports.daily_sales(repo, "STN-A", "2026-01-10"),
        settlement=result.settlement,
    )
    assert pdf.startswith(b"%PDF")

    empty = build_daily_report_pdf(
        station=repo.get_station("STN-B"),
        sales=reports.daily_sales(repo, "STN-B", "2026-01-10"),
    )
    assert empty.startswith(b"%PDF")


@pytest.fixture
def costed_month(repo, record):
    price_store.set_price(repo, "STN-A", "petrol", 100, effective_from="2026-01-01", cost_price=90)
    price_store.set_price(repo, "STN-A", "petrol", 110, effective_from="2026-01-03", cost_price=95)
    price_store.set_price(repo, "STN-A", "diesel", 90, effective_from="2026-01-01")
    record("NZ-1", 10, "2026-01-01")
    record("NZ-1", 30, "2026-01-02")
    record("NZ-2", 1005, "2026-01-02", employee_id="EMP-B")
    record("NZ-1", 40, "2026-01-03")


def test_profit_uses_cost_price_of_each_reading_day(repo, costed_month):
    data = reports.profit_summary(repo, "STN-A", "2026-01-01", "2026-01-31")
    assert data["summary"] == {
        "totalRevenue": 4100.0,
        "totalCostOfGoods": 3650.0,
        "grossProfit": 450.0,
        "profitMargin": 10.98,
        "totalLitres": 40.0,
        "profitPerLitre": 11.25,
    }
    assert data["byFuelType"]["petrol"]["readings"] == 3
    assert data["byFuelType"]["petrol"]["profit"] == 450.0


def test_profit_excludes_readings_without_cost_price(repo, costed_month):
    data = reports.profit_summary(repo, "STN-A", "2026-01-01", "2026-01-31")
    diesel = data["byFuelType"]["diesel"]
    assert diesel["revenue"] == 0
    assert diesel["profitMargin"] is None
    assert diesel["profitPerLitre"] is None
    assert (diesel["readings"], diesel["readingsWithCost"]) == (1, 0)
    assert data["dataCompleteness"] == {
        "totalReadings": 4,
        "readingsUsedForCalculation": 3,
        "readingsExcluded": 1,
        "completenessPercentage": 75.0,
    }


def test_profit_for_a_single_day(repo, costed_month):
    data = reports.profit_summary(repo, "STN-A", "2026-01-03", "2026-01-03")
    assert data["summary"]["totalRevenue"] == 1100
    assert data["summary"]["grossProfit"] == 150
    assert data["dataCompleteness"]["totalReadings"] == 1


def test_profit_with_no_readings(repo):
    data = reports.profit_summary(repo, "STN-B", "2026-01-01", "2026-01-31")
    assert data["summary"]["grossProfit"] == 0
    assert data["summary"]["profitMargin"] == 0
    assert data["byFuelType"] == {}
    assert data["dataCompleteness"]["completenessPercentage"] == 0
    with pytest.raises(NotFoundError):
        reports.profit_summary(repo, "NOPE", "2026-01-01", "2026-01-31")
