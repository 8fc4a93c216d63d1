from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import get_settings
from .db import get_db
from .messaging.notifier import ChangeNotifier
from .messaging.service import MessagingService

_notifier: ChangeNotifier | None = None


def get_notifier() -> ChangeNotifier:
    # Un único notificador por proceso: todas las sesiones en vivo comparten suscripciones
    global _notifier
    if _notifier is None:
        _notifier = ChangeNotifier(queue_size=get_settings().notifier_queue_size)
    return _notifier


async def get_messaging(
    db: AsyncIOMotorDatabase = Depends(get_db),
    notifier: ChangeNotifier = Depends(get_notifier),
) -> MessagingService:
    return MessagingService(db, notifier)
