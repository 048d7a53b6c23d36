import io
import logging
import re

from flask import Blueprint, Flask, current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

import price_store
import readings
import registry
import reports
import settlements
from audit_log import AuditLog
from config import Config
from errors import FuelSyncError, NotFoundError
from persistence import get_repo
from report_pdf import build_daily_report_pdf
from utils import month_range, parse_business_date, today_local

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api/v1")


# =========================
# Helpers
# =========================

def _repo():
    return current_app.extensions["fuelsync.repo"]


def _tz():
    return current_app.config["STATION_TIMEZONE"]


def _ok(data, status=200, meta=None):
    body = {"success": True, "data": data}
    if meta:
        body["meta"] = meta
    return jsonify(body), status


def _snake(key: str) -> str:
    return re.sub(r"([A-Z])", r"_\1", key).lower()


def _body() -> dict:
    payload = request.get_json(force=True, silent=True)
    return payload if isinstance(payload, dict) else {}


def _field(body: dict, key: str, default=None):
    """camelCase first, snake_case alias second."""
    if key in body:
        return body[key]
    return body.get(_snake(key), default)


def _arg(key: str, default=None):
    v = request.args.get(key)
    if v is None:
        v = request.args.get(_snake(key))
    return v if v not in (None, "") else default


def _audit(action, entity_id, station_id="", note=""):
    current_app.extensions["fuelsync.audit"].append(
        action,
        entity_id,
        station_id=station_id,
        route=request.path,
        actor_ip=request.headers.get("X-Forwarded-For", request.remote_addr),
        user_agent=request.headers.get("User-Agent", ""),
        note=note,
    )


def _station_ids_arg(value):
    if value in (None, "", "all"):
        return "all"
    return [s.strip() for s in str(value).split(",") if s.strip()]


# =========================
# Stations / nozzles / employees
# =========================

@api.route("/stations", methods=["GET"])
def list_stations():
    return _ok([registry.station_to_dict(s) for s in _repo().list_stations()])


@api.route("/stations", methods=["POST"])
def create_station():
    body = _body()
    station = registry.create_station(_repo(), _field(body, "name"), _field(body, "code"), _field(body, "id"))
    return _ok(registry.station_to_dict(station), 201)


@api.route("/stations/<station_id>", methods=["GET"])
def get_station(station_id):
    return _ok(registry.station_to_dict(registry.require_station(_repo(), station_id)))


@api.route("/stations/<station_id>/nozzles", methods=["GET"])
def list_nozzles(station_id):
    return _ok([registry.nozzle_to_dict(n) for n in registry.list_nozzles(_repo(), station_id)])


@api.route("/stations/<station_id>/nozzles", methods=["POST"])
def create_nozzle(station_id):
    body = _body()
    nozzle = registry.create_nozzle(
        _repo(), station_id,
        nozzle_number=_field(body, "nozzleNumber"),
        fuel_type=_field(body, "fuelType"),
        initial_reading=_field(body, "initialReading"),
        status=_field(body, "status"),
    )
    return _ok(registry.nozzle_to_dict(nozzle), 201)


@api.route("/stations/<station_id>/employees", methods=["GET"])
def list_employees(station_id):
    return _ok([registry.employee_to_dict(e) for e in registry.list_employees(_repo(), station_id)])


@api.route("/stations/<station_id>/employees", methods=["POST"])
def create_employee(station_id):
    body = _body()
    employee = registry.create_employee(_repo(), station_id, _field(body, "name"), _field(body, "role"))
    return _ok(registry.employee_to_dict(employee), 201)


# =========================
# Fuel prices
# =========================

@api.route("/stations/<station_id>/prices", methods=["GET"])
def list_prices(station_id):
    repo = _repo()
    on_date = parse_business_date(_arg("date"), _tz()) if _arg("date") else today_local(_tz())
    current = price_store.current_prices(repo, station_id, on_date)
    history = price_store.price_history(repo, station_id, _arg("fuelType"))
    return _ok(
        {"current": [p.to_dict() for p in current], "history": [p.to_dict() for p in history]},
        meta={"date": on_date},
    )


@api.route("/stations/<station_id>/prices", methods=["POST"])
def set_price(station_id):
    body = _body()
    price = price_store.set_price(
        _repo(), station_id,
        fuel_type=_field(body, "fuelType"),
        price=_field(body, "price"),
        effective_from=_field(body, "effectiveFrom"),
        cost_price=_field(body, "costPrice"),
        updated_by=_field(body, "updatedBy"),
        tz_name=_tz(),
        max_price=current_app.config["MAX_PRICE_PER_LITRE"],
    )
    _audit("price_set", str(price.id), station_id,
           note=f"{price.fuel_type}={price.price:.2f} from {price.effective_from}")
    return _ok(price.to_dict(), 201)


@api.route("/stations/<station_id>/prices/check", methods=["GET"])
def check_price(station_id):
    on_date = parse_business_date(_arg("date"), _tz()) if _arg("date") else today_local(_tz())
    return _ok(price_store.check_price(_repo(), station_id, _arg("fuelType"), on_date))


# =========================
# Readings
# =========================

@api.route("/readings", methods=["POST"])
def create_reading():
    body = _body()
    reading = readings.record_reading(
        _repo(),
        nozzle_id=_field(body, "nozzleId"),
        meter_value=_field(body, "meterValue"),
        reading_date=_field(body, "readingDate"),
        employee_id=_field(body, "employeeId"),
        payment_allocation=_field(body, "paymentAllocation"),
        is_sample=_field(body, "isSample", False),
        notes=_field(body, "notes", ""),
        tz_name=_tz(),
        epsilon=current_app.config["AMOUNT_EPSILON"],
    )
    _audit("reading_recorded", reading.id, reading.station_id,
           note=f"{reading.litres_sold:.3f} L @ {reading.price_per_litre:.2f}")
    return _ok(reading.to_dict(), 201)


@api.route("/readings", methods=["GET"])
def list_readings():
    rows, pagination = readings.list_readings(
        _repo(),
        station_id=_arg("stationId"),
        nozzle_id=_arg("nozzleId"),
        start_date=_arg("startDate"),
        end_date=_arg("endDate"),
        page=_arg("page", 1),
        limit=_arg("limit", current_app.config["DEFAULT_PAGE_SIZE"]),
        max_limit=current_app.config["MAX_PAGE_SIZE"],
        tz_name=_tz(),
    )
    return _ok([r.to_dict() for r in rows], meta={"pagination": pagination})


@api.route("/readings/<reading_id>", methods=["GET"])
def get_reading(reading_id):
    return _ok(readings.get_reading(_repo(), reading_id).to_dict())


@api.route("/readings/previous/<nozzle_id>", methods=["GET"])
def previous_reading(nozzle_id):
    return _ok(readings.previous_reading(_repo(), nozzle_id, _arg("date"), tz_name=_tz()))


# =========================
# Daily sales / settlements
# =========================

def _day_arg():
    return _arg("date") or today_local(_tz())


@api.route("/stations/<station_id>/daily-sales", methods=["GET"])
def daily_sales(station_id):
    return _ok(reports.daily_sales(_repo(), station_id, _day_arg(), tz_name=_tz()))


@api.route("/stations/<station_id>/expected-cash", methods=["GET"])
def expected_cash(station_id):
    return _ok(settlements.compute_expected(_repo(), station_id, _day_arg(), tz_name=_tz()))


@api.route("/stations/<station_id>/settlements", methods=["POST"])
def create_settlement(station_id):
    body = _body()
    result = settlements.record_settlement(
        _repo(), station_id,
        on_date=_field(body, "date") or today_local(_tz()),
        actual_cash=_field(body, "actualCash"),
        notes=_field(body, "notes", ""),
        online=_field(body, "online"),
        credit=_field(body, "credit"),
        recorded_by=_field(body, "recordedBy"),
        tz_name=_tz(),
        tolerance_pct=current_app.config["SETTLEMENT_TOLERANCE_PCT"],
    )
    s = result.settlement
    _audit("settlement_updated" if result.already_settled else "settlement_recorded", s.id, station_id,
           note=f"{s.date} variance={s.variance:.2f}")
    return _ok(
        s.to_dict(),
        200 if result.already_settled else 201,
        meta={"alreadySettled": result.already_settled, "warnings": result.warnings},
    )


@api.route("/stations/<station_id>/settlements", methods=["GET"])
def list_settlements(station_id):
    rows = settlements.list_settlements(
        _repo(), station_id,
        start_date=_arg("startDate"),
        end_date=_arg("endDate"),
        limit=_arg("limit"),
        tz_name=_tz(),
    )
    return _ok([s.to_dict() for s in rows])


@api.route("/stations/<station_id>/settlements/<on_date>", methods=["GET"])
def get_settlement(station_id, on_date):
    registry.require_station(_repo(), station_id)
    return _ok(settlements.get_settlement(_repo(), station_id, on_date, tz_name=_tz()).to_dict())


@api.route("/stations/<station_id>/variance-summary", methods=["GET"])
def variance_summary(station_id):
    cfg = current_app.config
    return _ok(settlements.variance_summary(
        _repo(), station_id, _arg("startDate"), _arg("endDate"),
        tz_name=_tz(),
        review_pct=cfg["VARIANCE_REVIEW_PCT"],
        investigate_pct=cfg["VARIANCE_INVESTIGATE_PCT"],
    ))


@api.route("/stations/<station_id>/employee-shortfalls", methods=["GET"])
def employee_shortfalls(station_id):
    start, end = _arg("startDate"), _arg("endDate")
    data = reports.employee_shortfalls(_repo(), _station_ids_arg(station_id), start, end, tz_name=_tz())
    return _ok(data, meta={"startDate": start, "endDate": end})


# =========================
# Reports / exports
# =========================

@api.route("/reports/sales", methods=["GET"])
def sales_report():
    return _ok(reports.sales_report(
        _repo(),
        _station_ids_arg(_arg("stationId")),
        _arg("startDate"),
        _arg("endDate"),
        group_by=_arg("groupBy", "date"),
        tz_name=_tz(),
    ))


@api.route("/stations/<station_id>/profit-summary", methods=["GET"])
def profit_summary(station_id):
    # ?month=YYYY-MM, or an explicit startDate/endDate range; defaults to this month
    month = _arg("month")
    if month or not (_arg("startDate") or _arg("endDate")):
        month = month or today_local(_tz())[:7]
        start, end = month_range(month)
    else:
        start, end = _arg("startDate"), _arg("endDate")
    data = reports.profit_summary(_repo(), station_id, start, end, tz_name=_tz())
    return _ok(data, meta={"month": month} if month else None)


@api.route("/stations/<station_id>/profit-daily", methods=["GET"])
def profit_daily(station_id):
    day = _day_arg()
    return _ok(reports.profit_summary(_repo(), station_id, day, day, tz_name=_tz()))


@api.route("/stations/<station_id>/sales-export.csv", methods=["GET"])
def sales_export_csv(station_id):
    start, end = _arg("startDate"), _arg("endDate")
    df = reports.sales_export_frame(_repo(), station_id, start, end, tz_name=_tz())
    data = df.to_csv(index=False).encode("utf-8-sig")
    return send_file(
        io.BytesIO(data),
        mimetype="text/csv",
        as_attachment=True,
        download_name=f"sales_{station_id}_{start}_{end}.csv",
    )


@api.route("/stations/<station_id>/daily-report.pdf", methods=["GET"])
def daily_report_pdf(station_id):
    repo = _repo()
    station = registry.require_station(repo, station_id)
    sales = reports.daily_sales(repo, station_id, _day_arg(), tz_name=_tz())
    try:
        settlement = settlements.get_settlement(repo, station_id, sales["date"], tz_name=_tz())
    except NotFoundError:
        settlement = None

    pdf_bytes = build_daily_report_pdf(station=station, sales=sales, settlement=settlement, tz_name=_tz())
    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"daily_report_{station_id}_{sales['date']}.pdf",
    )


# =========================
# App factory
# =========================

def create_app(overrides=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app.extensions["fuelsync.repo"] = get_repo(app.config["DB_PATH"])
    app.extensions["fuelsync.audit"] = AuditLog(app.config["AUDIT_LOG_PATH"])
    app.register_blueprint(api)

    # --- Lightweight health check ---
    @app.route("/healthz", methods=["GET", "HEAD"])
    def healthz():
        if request.method == "HEAD":
            return ("", 200, {"Content-Type": "text/plain; charset=utf-8", "Cache-Control": "no-store"})
        return ("ok", 200, {"Content-Type": "text/plain; charset=utf-8", "Cache-Control": "no-store"})

    @app.errorhandler(FuelSyncError)
    def handle_domain_error(e):
        logger.warning("%s %s rejected: [%s] %s", request.method, request.path, e.kind, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        kind = "not_found" if e.code == 404 else "http_error"
        return jsonify({"success": False, "error": e.description, "kind": kind}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"success": False, "error": "Internal server error", "kind": "server_error"}), 500

    return app


# =========================
# Entrypoint
# =========================
if __name__ == "__main__":
    app = create_app()
    app.run(host=app.config["HOST"], port=app.config["PORT"], debug=app.config["DEBUG"])
