# agrimarket/utils.py
from typing import Any, Dict, Optional
from bson import ObjectId
from datetime import datetime
from fastapi import HTTPException

def to_id(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Convierte _id -> id (str) y todos los ObjectIds a strings.
    Si doc es None, devuelve {}.
    Las fechas se dejan como datetime: los modelos de salida las serializan.
    """
    if doc is None:
        return {}
    d = dict(doc)

    if "_id" in d:
        d["id"] = str(d.pop("_id"))

    for key, value in d.items():
        if isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, dict):
            d[key] = to_id(value)
        elif isinstance(value, list):
            d[key] = [
                str(item) if isinstance(item, ObjectId)
                else to_id(item) if isinstance(item, dict)
                else item
                for item in value
            ]

    return d


def utcnow() -> datetime:
    # Mongo guarda fechas naive en UTC con precisión de milisegundos
    now = datetime.utcnow()
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)

# ==================== Utilidades de Base de Datos ====================

def to_object_id(value: str, field_name: str = "id") -> ObjectId:
    """
    Convierte un string a ObjectId con validación.
    Centraliza la lógica de conversión para evitar duplicación.
    """
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}: {value}")
    return ObjectId(value)


def id_lookup(value: str) -> Dict[str, Any]:
    """Filtro por _id, tolerando ids que no son ObjectId."""
    if ObjectId.is_valid(value):
        return {"_id": ObjectId(value)}
    return {"_id": value}
