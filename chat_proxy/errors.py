"""Client-facing failure categories.

Each error carries the HTTP status and the short message returned to the
client as ``{"error": message}``. Anything more detailed stays in the logs.
"""


class ChatProxyError(Exception):
    status_code = 500
    message = "internal server error"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidInput(ChatProxyError):
    status_code = 400
    message = "invalid message"


class MessageTooLong(InvalidInput):
    message = "message too long (maximum 1000 characters)"


class NotFound(ChatProxyError):
    status_code = 404
    message = "endpoint does not exist"


class PayloadTooLarge(ChatProxyError):
    status_code = 413
    message = "request entity too large"


class RateLimited(ChatProxyError):
    status_code = 429
    message = "too many requests from this address, please retry later."


class UpstreamThrottled(ChatProxyError):
    status_code = 429
    message = "too many requests, try later"


class GatewayTimeout(ChatProxyError):
    status_code = 504
    message = "timeout, please retry"


class UpstreamAuthError(ChatProxyError):
    # Reported as a plain 500 so credential state is not revealed.
    status_code = 500
    message = "API authentication error"


class InternalError(ChatProxyError):
    status_code = 500
    message = "server error, please retry"
