# Exception Handlers
#
# The application loglevel determines the level of detail shown to the user.
# If set to debug, too much sensitive info might be shown !
#
# The exceptions are caught by the http binding (api.py) and formatted, for example:
# {
#      "code": 400,
#      "message": "Validation Error: Invalid encodingType supplied ..."
# }
#
# Client errors always carry their message, server errors only in debug mode.
#
from http import HTTPStatus
from sqlalchemy.exc import DontWrapMixin
import stacore
from .config import is_debug

HIDDEN_LOG = "(debug logging disabled)"


class StaError(Exception, DontWrapMixin):
    """
    Base class of the errors that are reported to the client
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = ""

    def __init__(self, message="", status_code=None):
        Exception.__init__(self, message)
        if status_code is not None:
            self.status_code = status_code
        self.message = self.message + message


class ValidationError(StaError):
    """
    This exception is raised when invalid input has been detected (client side input)
    Always send back the message to the client in the response
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = "Validation Error: "

    def __init__(self, message="", status_code=HTTPStatus.BAD_REQUEST.value):
        StaError.__init__(self, message, status_code)
        stacore.log.warning("ValidationError: %s", message)


class DuplicateReferenceError(ValidationError):
    """
    A relation was declared explicitly in the payload and implicitly through the request path
    """

    message = "Duplicate Reference: "


class UnknownPropertyError(StaError):
    """
    A filter or ordering refers to a property the entity set doesn't define
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = "Unknown Property: "

    def __init__(self, message="", status_code=HTTPStatus.BAD_REQUEST.value):
        StaError.__init__(self, message, status_code)
        stacore.log.warning("UnknownPropertyError: %s", message)


class InvalidNavigationError(StaError):
    """
    A path segment doesn't correspond to a declared relationship or an id is missing
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = "Invalid Navigation: "

    def __init__(self, message="", status_code=HTTPStatus.BAD_REQUEST.value):
        StaError.__init__(self, message, status_code)
        stacore.log.warning("InvalidNavigationError: %s", message)


class NotFoundError(StaError):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    message = "Not Found: "

    def __init__(self, message="", status_code=HTTPStatus.NOT_FOUND.value):
        StaError.__init__(self, message, status_code)
        stacore.log.info("Not found: %s", message)


class GenericError(StaError):
    """
    This exception is raised when an error has been detected
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value  # 500
    message = "Generic Error: "

    def __init__(self, message, status_code=HTTPStatus.INTERNAL_SERVER_ERROR.value):
        StaError.__init__(self, "", status_code)
        stacore.log.error("Generic Error: %s", message)
        if is_debug():
            self.message += str(message)
        else:
            self.message += HIDDEN_LOG
