from orderflow.models.domain import (  # noqa: F401
    AuditLog,
    CuratedOffer,
    DocumentSequence,
    EarlyPayRequest,
    EarlyPayStatus,
    InviteStatus,
    Notification,
    NotificationType,
    OfferStatus,
    Order,
    OrderProductionUpdate,
    OrderStatus,
    PaymentTransaction,
    Quote,
    QuoteStatus,
    Rfq,
    RfqStatus,
    RoleName,
    SupplierInvite,
    SupplierProfile,
    SupplierVerification,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
