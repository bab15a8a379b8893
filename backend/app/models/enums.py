"""
Account and shipment enumerations.
"""

import enum


class AccountRole(str, enum.Enum):
    """
    Role carried in the caller's token.

    Roles:
        ADMIN: Operator with access to pricing, recharge and reconciliation
        BRAND: Merchant that funds shipments from its ledger
        DISTRIBUTOR: Receives shipments; priced with a recipient surcharge
        SERVICE_CENTER: Receives shipments and books reverse returns
        CUSTOMER: End customer
    """
    ADMIN = "ADMIN"
    BRAND = "BRAND"
    DISTRIBUTOR = "DISTRIBUTOR"
    SERVICE_CENTER = "SERVICE_CENTER"
    CUSTOMER = "CUSTOMER"


class ServiceType(str, enum.Enum):
    STANDARD = "STANDARD"
    EXPRESS = "EXPRESS"
    OVERNIGHT = "OVERNIGHT"
    SAME_DAY = "SAME_DAY"


class RecipientType(str, enum.Enum):
    SERVICE_CENTER = "SERVICE_CENTER"
    DISTRIBUTOR = "DISTRIBUTOR"
    CUSTOMER = "CUSTOMER"


class ShipmentType(str, enum.Enum):
    FORWARD = "FORWARD"  # Warehouse -> recipient
    REVERSE = "REVERSE"  # Recipient -> warehouse (returns)
