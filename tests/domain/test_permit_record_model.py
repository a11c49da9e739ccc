from __future__ import annotations

from gdp_cloud.domain.models import Employee, ModuleSyncStatus, Partition, PermitRecord, RemoteResponse
from gdp_cloud.domain.record_dates import compare_records_by_date_desc, record_date_value, sort_records
from tests.fakes import fl_record, pa_record


def test_round_trip_dict_conserva_particion() -> None:
    record = fl_record()

    restored = PermitRecord.from_dict(record.to_dict())

    assert restored == record
    assert record.to_dict()["solicitud_type"] == "FL"


def test_from_dict_pa_descarta_campos_de_feriado_y_claves_desconocidas() -> None:
    payload = pa_record().to_dict()
    payload["periodo1"] = "2025"
    payload["campo_extra"] = "x"

    restored = PermitRecord.from_dict(payload)

    assert restored.periodo1 is None
    assert restored.solicitud_type == Partition.PA


def test_segundo_periodo_todo_o_nada() -> None:
    assert fl_record().second_period_is_consistent()
    assert not fl_record(saldo_final_p2=3.0).second_period_is_consistent()
    assert fl_record(periodo2="2026", saldo_final_p2=3.0).second_period_is_consistent()
    assert not fl_record(periodo2="2026", saldo_disponible_p2=5.0, saldo_final_p2=None).second_period_is_consistent()
    assert not fl_record(periodo2="2026", solicitado_p2=None).second_period_is_consistent()
    assert pa_record().second_period_is_consistent()


def test_saldo_final_por_particion() -> None:
    assert pa_record(dias_haber=6, cantidad_dias=2).saldo_final() == 4
    assert fl_record().saldo_final() == 10.0
    assert fl_record(periodo2="2026", saldo_final_p2=7.0).saldo_final() == 7.0
    assert fl_record(saldo_final_p1=None, saldo_final_p2=None).saldo_final(fallback=-1) == -1


def test_employee_from_dict_tolera_departamento_nulo() -> None:
    employee = Employee.from_dict({"nombre": "ANA", "rut": "1-9", "departamento": None})

    assert employee.departamento == ""


def test_module_sync_status_transiciones() -> None:
    status = ModuleSyncStatus().syncing()
    assert status.status == "syncing"

    failed = status.failed("boom")
    assert failed.status == "error"
    assert failed.last_error == "boom"

    recovered = failed.syncing()
    assert recovered.last_error is None


def test_remote_response_from_payload() -> None:
    ok = RemoteResponse.from_payload({"success": True, "data": [["a"]]})
    failed = RemoteResponse.from_payload({"success": False, "validationErrors": ["fila 2", "fila 3"]})
    weird = RemoteResponse.from_payload(["no", "dict"])

    assert ok.success and ok.data == [["a"]]
    assert failed.error_message() == "fila 2, fila 3"
    assert not weird.success
    assert RemoteResponse(success=False).error_message() == "Error desconocido"


def test_orden_por_fecha_descendente_con_respaldo() -> None:
    older = pa_record("a", fecha_decreto="2026-01-02")
    newer = pa_record("b", fecha_decreto="2026-03-01")
    no_decreto = pa_record("c", fecha_decreto="", fecha_inicio="2026-02-01")
    no_dates = pa_record("d", fecha_decreto="", fecha_inicio="", created_at=5)

    ordered = sort_records([older, no_dates, newer, no_decreto], compare_records_by_date_desc)

    assert [record.id for record in ordered] == ["b", "c", "a", "d"]
    assert record_date_value(no_dates) == 5


def test_orden_estable_con_fechas_iguales() -> None:
    first = pa_record("first")
    second = pa_record("second")

    ordered = sort_records([first, second], compare_records_by_date_desc)

    assert [record.id for record in ordered] == ["first", "second"]
