from __future__ import annotations

import sys

from gdp_cloud.bootstrap.exception_handler import manejar_excepcion_global, mensaje_para_usuario
from gdp_cloud.entrypoints.main import EXIT_UNEXPECTED, main


def run() -> int:
    try:
        return main()
    except Exception as exc:  # noqa: BLE001
        incident_id = manejar_excepcion_global(type(exc), exc, exc.__traceback__)
        sys.stderr.write(mensaje_para_usuario(incident_id) + "\n")
        return EXIT_UNEXPECTED


raise SystemExit(run())
