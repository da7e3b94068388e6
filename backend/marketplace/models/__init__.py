from marketplace.models.user import BrandProfile, CreatorProfile, User
from marketplace.models.campaign import Campaign
from marketplace.models.application import Application
from marketplace.models.contract import Contract, Milestone
from marketplace.models.escrow import EscrowTransaction, Payment
from marketplace.models.audit_log import AuditLog

__all__ = [
    "User",
    "BrandProfile",
    "CreatorProfile",
    "Campaign",
    "Application",
    "Contract",
    "Milestone",
    "EscrowTransaction",
    "Payment",
    "AuditLog",
]
