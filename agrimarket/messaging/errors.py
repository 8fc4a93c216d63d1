"""
Errores de la mensajería.

Los de validación (InvalidParticipants, ForbiddenPair, UserBlocked,
NotAParticipant, EmptyMessage, MessageTooLong) son terminales: se muestran al
usuario y nunca se reintentan. TransientStoreError se reintenta solo en
lecturas.
"""


class MessagingError(Exception):
    status_code = 400
    code = "messaging_error"
    default_detail = "Error de mensajería"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidParticipants(MessagingError):
    status_code = 400
    code = "invalid_participants"
    default_detail = "Participantes inválidos"


class ForbiddenPair(MessagingError):
    status_code = 403
    code = "forbidden_pair"
    default_detail = "Esta combinación de roles no puede iniciar una conversación"


class UserBlocked(MessagingError):
    status_code = 403
    code = "user_blocked"
    default_detail = "El usuario está bloqueado"


class NotAParticipant(MessagingError):
    status_code = 403
    code = "not_a_participant"
    default_detail = "No participas en esta conversación"


class EmptyMessage(MessagingError):
    status_code = 422
    code = "empty_message"
    default_detail = "El mensaje no puede estar vacío"


class MessageTooLong(MessagingError):
    status_code = 422
    code = "message_too_long"
    default_detail = "El mensaje es demasiado largo"


class NotFound(MessagingError):
    status_code = 404
    code = "not_found"
    default_detail = "No encontrado"


class Unauthenticated(MessagingError):
    status_code = 401
    code = "unauthenticated"
    default_detail = "Autenticación requerida"


class TransientStoreError(MessagingError):
    status_code = 503
    code = "transient_store_error"
    default_detail = "Error temporal de almacenamiento, inténtalo de nuevo"
