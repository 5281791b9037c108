"""
Error taxonomy for the EduCorp services.

Every service error carries the HTTP status the API answers with, so route
handlers can let them propagate and a single exception handler renders them.
"""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class NotFound(ServiceError):
    status_code = 404


class DuplicateEnrollment(ServiceError):
    status_code = 409


class NotEnrolled(ServiceError):
    status_code = 409


class NoValidAnswers(ServiceError):
    status_code = 422


class IncompleteAssessment(ServiceError):
    status_code = 422


class ConfigurationMissing(ServiceError):
    status_code = 503


class TransientIO(ServiceError):
    status_code = 502


class InvalidCredentials(ServiceError):
    status_code = 401


class EmailAlreadyRegistered(ServiceError):
    status_code = 400
