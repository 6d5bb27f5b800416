"""Core privacy abstractions: base-2 budgets, mechanism lifecycle and accounting."""
from .eta import Eta, as_eta
from .base_mechanism import BaseMechanism
from .privacy_accountant import PrivacyAccountant, PrivacyEvent

__all__ = [
    "Eta",
    "as_eta",
    "BaseMechanism",
    "PrivacyAccountant",
    "PrivacyEvent",
]
