from __future__ import annotations

import asyncio

from gdp_cloud.application.realtime import SyncEventBus
from gdp_cloud.core.errors import RemoteTransportError
from gdp_cloud.domain.models import Partition
from tests.fakes import fl_record, fl_row, pa_record, pa_row


def _seed_remote(gateway) -> None:
    gateway.data[Partition.PA] = [
        pa_row(1, "001/2026", "JUAN PEREZ", "12.345.678-5", "lunes, 05 de enero de 2026"),
        pa_row(2, "002/2026", "ANA ROJAS", "11.111.111-1", "martes, 06 de enero de 2026"),
    ]
    gateway.data[Partition.FL] = [fl_row(1, "001/2026", "MARIA SOTO", "11.111.111-1")]


# Fetch


def test_fetch_ok_ordena_y_guarda_backup(records_sync, gateway, backup) -> None:
    _seed_remote(gateway)

    outcome = asyncio.run(records_sync.fetch_from_cloud())

    assert outcome.status == "ok"
    assert not outcome.stale
    assert [record.fecha_decreto for record in records_sync.records] == ["2026-01-20", "2026-01-06", "2026-01-05"]
    assert backup.records == list(records_sync.records)
    assert records_sync.sync_error is False
    assert records_sync.is_syncing is False
    assert records_sync.last_sync is not None
    for partition in (Partition.PA, Partition.FL):
        assert records_sync.module_sync[partition].status == "idle"
        assert records_sync.module_sync[partition].last_success is not None


def test_fetch_parcial_conserva_registros_previos_de_la_particion_fallida(records_sync, gateway, errors) -> None:
    _seed_remote(gateway)
    gateway.fetch_failures[Partition.FL] = RemoteTransportError("Tiempo de espera agotado (FL)")
    previous_fl = fl_record("FL-previo")
    records_sync.records = (previous_fl, pa_record("PA-viejo"))

    outcome = asyncio.run(records_sync.fetch_from_cloud())

    assert outcome.status == "partial"
    assert outcome.failed_partitions == (Partition.FL,)
    ids = {record.id for record in records_sync.records}
    assert "FL-previo" in ids
    assert "PA-viejo" not in ids
    assert len(records_sync.records) == 3
    assert records_sync.module_sync[Partition.FL].status == "error"
    assert records_sync.module_sync[Partition.PA].status == "idle"
    assert "[FL] Tiempo de espera agotado (FL)" in outcome.warnings
    assert errors == ["Error al cargar FL desde la nube"]


def test_fetch_fallido_total_usa_backup_degradado(records_sync, gateway, backup, errors) -> None:
    gateway.fetch_failures[Partition.PA] = "HTTP 500"
    gateway.fetch_failures[Partition.FL] = "HTTP 500"
    backup.save_records([pa_record()])

    outcome = asyncio.run(records_sync.fetch_from_cloud())

    assert outcome.status == "degraded"
    assert outcome.stale
    assert outcome.last_backup_at == backup.last_backup
    assert records_sync.records == (pa_record(),)
    assert records_sync.sync_error is True
    assert errors[-1].startswith("Modo offline: usando backup local (")
    assert records_sync.module_sync[Partition.PA].last_error == "HTTP 500"


def test_fetch_sin_conexion_y_sin_backup_no_disponible(records_sync, gateway, connectivity, errors) -> None:
    connectivity.set_online(False)

    outcome = asyncio.run(records_sync.fetch_from_cloud())

    assert outcome.status == "unavailable"
    assert outcome.records == ()
    assert gateway.fetch_calls == []
    assert errors == ["Sin conexión a internet"]


def test_fetch_con_backup_caido_no_rompe_la_sincronizacion(records_sync, gateway, backup) -> None:
    _seed_remote(gateway)
    backup.fail = True

    outcome = asyncio.run(records_sync.fetch_from_cloud())

    assert outcome.status == "ok"
    assert len(records_sync.records) == 3


def test_fetch_mas_reciente_reemplaza_al_que_sigue_en_vuelo(records_sync, gateway) -> None:
    _seed_remote(gateway)

    async def scenario():
        gateway.gate = asyncio.Event()
        first = asyncio.create_task(records_sync.fetch_from_cloud())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        gateway.gate = None
        second = await records_sync.fetch_from_cloud()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first.status == "superseded"
    assert second.status == "ok"
    assert len(records_sync.records) == 3
    assert records_sync.is_syncing is False


def test_fetch_offline_reemplaza_al_fetch_en_vuelo(records_sync, gateway, connectivity, backup) -> None:
    _seed_remote(gateway)
    backup.save_records([pa_record("PA-backup")])

    async def scenario():
        gate = asyncio.Event()
        gateway.gate = gate
        online = asyncio.create_task(records_sync.fetch_from_cloud())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        connectivity.set_online(False)
        offline = await records_sync.fetch_from_cloud()
        gate.set()
        return await online, offline

    first, offline = asyncio.run(scenario())

    assert first.status == "superseded"
    assert offline.status == "degraded"
    assert [record.id for record in records_sync.records] == ["PA-backup"]
    assert records_sync.is_syncing is False
    assert records_sync.module_sync[Partition.PA].last_error == "Sin conexión a internet"


def test_fetch_module_reemplaza_solo_su_particion(records_sync, gateway) -> None:
    _seed_remote(gateway)
    records_sync.records = (fl_record("FL-local"), pa_record("PA-viejo"))

    assert asyncio.run(records_sync.fetch_module_from_cloud(Partition.PA)) is True

    ids = {record.id for record in records_sync.records}
    assert "FL-local" in ids
    assert "PA-viejo" not in ids
    assert gateway.fetch_calls == [Partition.PA]


def test_fetch_module_fallido_marca_error(records_sync, gateway) -> None:
    gateway.fetch_failures[Partition.FL] = "Hoja no encontrada"

    assert asyncio.run(records_sync.fetch_module_from_cloud(Partition.FL)) is False
    assert records_sync.module_sync[Partition.FL].last_error == "Hoja no encontrada"


# Push


def test_push_falla_pa_y_fl_queda_sincronizado(records_sync, gateway, clock, errors) -> None:
    gateway.push_failures[Partition.PA] = "Hoja bloqueada"

    async def scenario() -> bool:
        return await records_sync.sync_to_cloud([pa_record(), fl_record()])

    assert asyncio.run(scenario()) is False
    assert records_sync.module_sync[Partition.FL].status == "idle"
    assert records_sync.module_sync[Partition.FL].last_success is not None
    assert records_sync.module_sync[Partition.PA].status == "error"
    assert "Hoja bloqueada" in records_sync.module_sync[Partition.PA].last_error
    assert records_sync.pending_sync
    assert records_sync.is_retry_scheduled
    assert len(clock.active) == 1
    assert errors == ["Error al sincronizar con la nube"]


def test_reintento_unico_hasta_que_el_push_funciona(records_sync, gateway, clock, backup) -> None:
    gateway.push_failures[Partition.PA] = RemoteTransportError("Error de red (PA)")
    snapshot = [pa_record(), fl_record()]

    async def scenario() -> None:
        assert await records_sync.sync_to_cloud(snapshot) is False
        assert await records_sync.sync_to_cloud(snapshot) is False
        assert len(clock.active) == 1

        clock.advance(5)
        await records_sync._tasks.wait_idle()
        assert len(clock.active) == 1
        assert len(gateway.pushed) == 6

        gateway.push_failures.clear()
        clock.advance(5)
        await records_sync._tasks.wait_idle()

    asyncio.run(scenario())

    assert not records_sync.pending_sync
    assert not records_sync.is_retry_scheduled
    assert records_sync.retry_attempts == 0
    assert clock.active == []
    assert backup.pending is None


def test_push_offline_queda_pendiente_y_se_reanuda_al_reconectar(records_sync, gateway, connectivity, backup, clock) -> None:
    connectivity.set_online(False)
    records_sync.start()
    snapshot = [pa_record(), fl_record()]

    async def scenario() -> None:
        assert await records_sync.sync_to_cloud(snapshot) is False
        await records_sync._tasks.wait_idle()
        assert gateway.pushed == []
        assert clock.active == []
        assert backup.pending == snapshot

        connectivity.set_online(True)
        await records_sync._tasks.wait_idle()

    asyncio.run(scenario())

    assert sorted(gateway.pushed_partitions()) == [Partition.FL, Partition.PA]
    assert not records_sync.pending_sync
    assert backup.pending is None


def test_push_antiguo_exitoso_no_borra_el_reintento_del_push_nuevo(records_sync, gateway, clock) -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        gateway.push_gate = gate
        older = asyncio.create_task(records_sync.sync_to_cloud([pa_record("PA-viejo")]))
        for _ in range(3):
            await asyncio.sleep(0)
        gateway.push_gate = None

        gateway.push_failures[Partition.PA] = "Hoja bloqueada"
        assert await records_sync.sync_to_cloud([pa_record("PA-nuevo", acto="099/2026")]) is False
        gateway.push_failures.clear()
        gate.set()

        assert await older is True
        assert records_sync.pending_sync
        assert records_sync.is_retry_scheduled
        assert records_sync.module_sync[Partition.PA].status == "error"

        clock.advance(5)
        await records_sync._tasks.wait_idle()

    asyncio.run(scenario())

    partition, rows = gateway.pushed[-1]
    assert partition == Partition.PA
    assert rows[0][2] == "099/2026"
    assert not records_sync.pending_sync
    assert not records_sync.is_retry_scheduled
    assert records_sync.module_sync[Partition.PA].status == "idle"
    assert records_sync.is_syncing is False


def test_push_antiguo_fallido_no_agenda_reintento_tras_un_push_exitoso(records_sync, gateway, clock, errors) -> None:
    async def scenario() -> bool:
        gate = asyncio.Event()
        gateway.push_gate = gate
        older = asyncio.create_task(records_sync.sync_to_cloud([pa_record("PA-viejo")]))
        for _ in range(3):
            await asyncio.sleep(0)
        gateway.push_gate = None

        assert await records_sync.sync_to_cloud([pa_record("PA-nuevo")]) is True
        gateway.push_failures[Partition.PA] = "Hoja bloqueada"
        gate.set()
        return await older

    assert asyncio.run(scenario()) is False
    assert not records_sync.pending_sync
    assert not records_sync.is_retry_scheduled
    assert clock.active == []
    assert records_sync.module_sync[Partition.PA].status == "idle"
    assert errors == []


def test_push_sin_datos_no_llama_a_la_red(records_sync, gateway) -> None:
    async def scenario() -> bool:
        result = await records_sync.sync_to_cloud([])
        await records_sync._tasks.wait_idle()
        return result

    assert asyncio.run(scenario()) is True
    assert gateway.pushed == []
    assert not records_sync.pending_sync


def test_push_solo_envia_particiones_con_datos(records_sync, gateway) -> None:
    async def scenario() -> bool:
        result = await records_sync.sync_to_cloud([pa_record()])
        await records_sync._tasks.wait_idle()
        return result

    assert asyncio.run(scenario()) is True
    assert gateway.pushed_partitions() == [Partition.PA]
    assert records_sync.module_sync[Partition.FL].last_success is None


def test_push_exitoso_publica_evento(records_sync, event_log) -> None:
    async def scenario() -> None:
        await records_sync.sync_to_cloud([pa_record(), fl_record()])
        await records_sync._tasks.wait_idle()

    asyncio.run(scenario())

    (event,) = event_log.events
    assert (event.scope, event.action) == ("records", "sync_to_cloud")
    assert event.metadata == {"total": 2, "pa": 1, "fl": 1}
    assert event.origin_client_id == "cliente-local"


def test_resume_pending_from_backup(records_sync, gateway, backup) -> None:
    backup.pending = [pa_record()]

    async def scenario() -> bool:
        result = await records_sync.resume_pending_from_backup()
        await records_sync._tasks.wait_idle()
        return result

    assert asyncio.run(scenario()) is True
    assert gateway.pushed_partitions() == [Partition.PA]
    assert backup.pending is None
    assert asyncio.run(records_sync.resume_pending_from_backup()) is False


# Mutaciones y deshacer


def test_once_mutaciones_dejan_diez_snapshots(records_sync) -> None:
    async def scenario() -> None:
        for index in range(11):
            record = pa_record(f"PA-{index}")
            assert await records_sync.apply_mutation(lambda current, record=record: (record, *current))
        await records_sync._tasks.wait_idle()

    asyncio.run(scenario())

    assert len(records_sync.records) == 11
    assert records_sync.undo_depth == 10


def test_undo_restaura_y_empuja_el_snapshot(records_sync, gateway) -> None:
    async def scenario() -> bool:
        await records_sync.apply_mutation(lambda current: (pa_record("PA-1"), *current))
        await records_sync.apply_mutation(lambda current: (fl_record("FL-1"), *current))
        gateway.pushed.clear()
        result = await records_sync.undo()
        await records_sync._tasks.wait_idle()
        return result

    assert asyncio.run(scenario()) is True
    assert [record.id for record in records_sync.records] == ["PA-1"]
    assert gateway.pushed_partitions() == [Partition.PA]
    assert records_sync.undo_depth == 1
    assert asyncio.run(records_sync.undo()) is True
    assert asyncio.run(records_sync.undo()) is False


# Tiempo real


def test_eventos_remotos_disparan_un_refresh_diferido(records_sync, gateway, clock, event_log, event_bus) -> None:
    _seed_remote(gateway)
    remote = SyncEventBus(event_log, "cliente-remoto")

    async def scenario() -> None:
        records_sync.start()
        event_bus.publish("records", "sync_to_cloud")
        assert clock.active == []

        for _ in range(3):
            remote.publish("records", "sync_to_cloud")
        remote.publish("employees", "sync_to_cloud")
        assert len(clock.active) == 1

        clock.advance(0.9)
        await records_sync._tasks.wait_idle()
        await records_sync.close()
        remote.publish("records", "sync_to_cloud")

    asyncio.run(scenario())

    assert sorted(gateway.fetch_calls) == [Partition.FL, Partition.PA]
    assert len(records_sync.records) == 3
    assert clock.active == []
