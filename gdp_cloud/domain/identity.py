from __future__ import annotations

import re
import unicodedata

_NON_RUT_CHARS = re.compile(r"[^0-9kK]")
_WHITESPACE = re.compile(r"\s+")
_THOUSANDS = re.compile(r"\B(?=(\d{3})+(?!\d))")

MIN_BODY_LENGTH = 7
MAX_BODY_LENGTH = 8


def sanitize_rut(value: str | None) -> str:
    return _NON_RUT_CHARS.sub("", str(value or "")).upper()


def canonicalize_rut(value: str | None) -> str | None:
    """Forma canónica `<cuerpo>-<dv>` usada para comparar identidades.

    Ignora puntos, guiones, espacios y mayúsculas/minúsculas del dígito
    verificador. Devuelve None si el valor no tiene forma de RUT.
    """
    cleaned = sanitize_rut(value)
    if len(cleaned) < 2:
        return None
    body, check_digit = cleaned[:-1], cleaned[-1]
    if not body.isdigit():
        return None
    return f"{body}-{check_digit}"


def compute_check_digit(body: str) -> str:
    total = 0
    multiplier = 2
    for digit in reversed(body):
        total += int(digit) * multiplier
        multiplier = 2 if multiplier == 7 else multiplier + 1
    expected = 11 - (total % 11)
    if expected == 11:
        return "0"
    if expected == 10:
        return "K"
    return str(expected)


def validate_checksum(value: str | None) -> bool:
    canonical = canonicalize_rut(value)
    if canonical is None:
        return False
    body, check_digit = canonical.split("-")
    if not MIN_BODY_LENGTH <= len(body) <= MAX_BODY_LENGTH:
        return False
    return check_digit == compute_check_digit(body)


def format_rut_for_display(value: str | None) -> str:
    # Nunca lanza: la UI debe poder mostrar lo que se tipeó aunque sea inválido.
    compact = str(value or "").replace(".", "").replace("-", "").strip()
    if len(compact) <= 1:
        return compact
    body, check_digit = compact[:-1], compact[-1]
    return f"{_THOUSANDS.sub('.', body)}-{check_digit}"


def format_rut_for_storage(value: str | None) -> str:
    canonical = canonicalize_rut(value)
    if canonical is None:
        return ""
    return format_rut_for_display(canonical.replace("-", "")).upper()


def normalize_identity_name(value: str | None) -> str:
    decomposed = unicodedata.normalize("NFD", str(value or ""))
    without_marks = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _WHITESPACE.sub(" ", without_marks.casefold()).strip()


def same_rut(left: str | None, right: str | None) -> bool:
    left_canonical = canonicalize_rut(left)
    return left_canonical is not None and left_canonical == canonicalize_rut(right)
