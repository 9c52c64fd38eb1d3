"""Error taxonomy shared by services, routes and the client.

Each error carries the HTTP status the API answers with, so routes can let
them propagate to the application-level handler.
"""


class ChatError(Exception):

    status_code = 500

    def __init__(self, detail: str = "Server Error") -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(ChatError):

    status_code = 400


class NotFoundError(ChatError):

    status_code = 404


class RecipientNotFound(NotFoundError):
    pass


class SenderProfileNotFound(NotFoundError):
    pass


class MessageNotFound(NotFoundError):
    pass


class ConversationNotFound(NotFoundError):
    pass


class ForbiddenError(ChatError):

    status_code = 403


class ConflictError(ChatError):

    status_code = 409


class TransientError(ChatError):

    status_code = 503
