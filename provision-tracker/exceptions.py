# provision-tracker/exceptions.py


class ProvisionError(Exception):
    """Base class for errors raised by the commission engine."""


class InvalidDealError(ProvisionError, ValueError):
    """A deal (or its company assignments) is structurally malformed."""


class DataIntegrityError(ProvisionError):
    """A record references a deal or company that does not exist."""


class DealNotFoundError(ProvisionError, LookupError):
    def __init__(self, deal_id):
        super().__init__(f"Deal {deal_id} not found")
        self.deal_id = deal_id


class CompanyNotFoundError(ProvisionError, LookupError):
    def __init__(self, missing):
        super().__init__(f"Companies not found: {', '.join(str(m) for m in missing)}")
        self.missing = list(missing)


class CreditWindowClosedError(ProvisionError):
    """A credit-back was requested outside the company's credit window."""
