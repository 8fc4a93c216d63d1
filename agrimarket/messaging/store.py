import asyncio
from typing import Awaitable, Callable, TypeVar
import logging

from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def store_call(awaitable: Awaitable[T]) -> T:
    """
    Ejecuta una operación contra MongoDB traduciendo fallos de red/almacén a
    TransientStoreError. DuplicateKeyError se deja pasar: quien inserta decide
    qué significa.
    """
    try:
        return await awaitable
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        logger.error(f"Error de almacenamiento: {e}", exc_info=True)
        raise TransientStoreError() from e


async def retry_read(read: Callable[[], Awaitable[T]], attempts: int = 3, backoff: float = 0.5) -> T:
    """
    Reintenta una LECTURA ante TransientStoreError con backoff exponencial.
    Nunca usar para envíos: duplicaría contenido del usuario.
    """
    attempt = 1
    while True:
        try:
            return await read()
        except TransientStoreError:
            if attempt >= attempts:
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(f"Lectura fallida (intento {attempt}/{attempts}), reintento en {delay:.2f}s")
            await asyncio.sleep(delay)
            attempt += 1
