"""
Domain errors raised by the request engine.

Routes do not catch these; ``main.py`` renders them as
``{"success": false, "message": ...}`` with the error's status code.
"""

ALREADY_CLOSED_MESSAGE = "Blood request already fulfilled or expired."


class LifelineError(Exception):
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class RequestNotFoundError(LifelineError):
    status_code = 404
    default_message = "Blood request not found."


class ResponseTokenNotFoundError(LifelineError):
    status_code = 404
    default_message = "Response link is invalid."


class RequestClosedError(LifelineError):
    status_code = 409
    default_message = ALREADY_CLOSED_MESSAGE


class InvalidRequestError(LifelineError):
    status_code = 422
    default_message = "Invalid blood request."
