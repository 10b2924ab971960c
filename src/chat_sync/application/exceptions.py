from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ValidationError(AppError):
    pass


class TransientNetworkError(AppError):
    """A REST call failed in a way the user may simply retry."""


class InvalidResponseError(AppError):
    """The server answered 2xx with a body that does not match the API shape."""


class SendFailedError(AppError):
    """An optimistic send was rejected; carries the input back for retry."""

    def __init__(
        self,
        content: str,
        attachments: tuple[str, ...] = (),
        detail: str = "Failed to send message",
    ) -> None:
        self.content = content
        self.attachments = attachments
        super().__init__(detail)
