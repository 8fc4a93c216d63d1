from typing import Optional, Tuple

from .errors import InvalidParticipants

SEPARATOR = ":"
PREFIX = "chat"


def _clean(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidParticipants(f"{field_name} vacío")
    value = str(value).strip()
    if SEPARATOR in value:
        raise InvalidParticipants(f"{field_name} no puede contener '{SEPARATOR}'")
    return value


def canonical_pair(participant_a: str, participant_b: str) -> Tuple[str, str]:
    """Devuelve (low, high): el par ordenado, independiente del orden de llamada."""
    a = _clean(participant_a, "participant_a")
    b = _clean(participant_b, "participant_b")
    if a == b:
        raise InvalidParticipants("No puedes abrir una conversación contigo mismo")
    return (a, b) if a < b else (b, a)


def thread_key(participant_a: str, participant_b: str, product_id: Optional[str] = None) -> str:
    """
    Clave canónica del thread para un par de participantes y producto opcional.

    Pura y determinista: thread_key(a, b, p) == thread_key(b, a, p).
    Un producto distinto (o la ausencia de producto) da otro thread.
    """
    low, high = canonical_pair(participant_a, participant_b)
    parts = [PREFIX, low, high]
    if product_id is not None:
        parts.append(_clean(product_id, "product_id"))
    return SEPARATOR.join(parts)
