from typing import Any, Dict


class DataLayerException(Exception):
    """Base exception for data layer errors"""
    def __init__(self, message: str, context: Dict[str, Any] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

class RecordNotFoundException(DataLayerException):
    """Specific exception for when a record is not found"""
    pass

class IntegrityException(DataLayerException):
    """Constraint violations raised while writing rows"""
    pass

class GeneralDataException(DataLayerException):
    """Anything else that goes wrong talking to the database"""
    pass

class FeeValidationError(DataLayerException):
    """
    Invalid input to the fee engine: unknown country codes, NaN amounts or
    percentages, malformed discounts, bad partial-refund amounts.
    """
    pass

class TaxEngineException(DataLayerException):
    """Stripe Tax rejected or failed a request"""
    pass
