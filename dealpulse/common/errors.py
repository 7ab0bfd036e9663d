"""
DealPulse error taxonomy.

Internal components raise these; the pipeline facades and the HTTP layer
convert them into tagged results so nothing crosses the public boundary.
"""

from pydantic import ValidationError as PydanticValidationError


class DealPulseError(Exception):
    """Base class for all DealPulse errors"""


class ValidationError(DealPulseError, ValueError):
    """Malformed input signal, transcript or payload"""


class NotFoundError(DealPulseError, LookupError):
    """Unknown audit entry, deal, alert or confirmation id"""


class NotRollbackableError(DealPulseError):
    """Rollback attempted on an ineligible audit action (or rollback disabled)"""


class DeliveryError(DealPulseError):
    """A delivery channel failed; non-fatal for the other channels"""


class DownstreamUnavailable(DealPulseError):
    """External record store is unreachable"""


class AuditWriteError(DealPulseError):
    """Audit entry could not be made durable"""


def parse_document(model_cls, data):
    """
    Validate an inbound document into ``model_cls``.

    Model instances pass through unchanged; pydantic failures surface as
    ``ValidationError`` so they never reach scoring.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid {model_cls.__name__}: {errors}") from e
