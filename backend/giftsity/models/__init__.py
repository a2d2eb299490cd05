from .identity import Admin, Seller, Customer, CorporateUser, ROLE_TO_MODEL
from .auth import OtpCode, SessionToken
from .security import AuthAuditEntry
from .catalog import Product, Review
from .orders import Order, OrderLine, OrderTransition, OrderEvent, Shipment, ReturnRequest
from .corporate import B2BInquiry, CorporateQuote, CorporateCatalogItem
from .payouts import SellerPayout

__all__ = [
    'Admin', 'Seller', 'Customer', 'CorporateUser', 'ROLE_TO_MODEL',
    'OtpCode', 'SessionToken', 'AuthAuditEntry',
    'Product', 'Review',
    'Order', 'OrderLine', 'OrderTransition', 'OrderEvent', 'Shipment', 'ReturnRequest',
    'B2BInquiry', 'CorporateQuote', 'CorporateCatalogItem',
    'SellerPayout',
]
