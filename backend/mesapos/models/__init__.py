from .catalog import Branch, Product
from .inventory import BranchInventory
from .tables import BranchTable, TABLE_STATUSES
from .customers import Customer, CUSTOMER_DOCUMENT_TYPES
from .sales import Sale, SaleItem, SaleEvent, SALE_STATUSES, PAYMENT_METHODS, SALE_DOCUMENT_TYPES
from .documents import FiscalDocument, EmissionAttempt, SUNAT_DOCUMENT_CODES, EMISSION_STATUSES
from .staff import Staff
from .shifts import SalesShift, SHIFT_STATUSES

__all__ = [
    'Branch', 'Product',
    'BranchInventory',
    'BranchTable', 'TABLE_STATUSES',
    'Customer', 'CUSTOMER_DOCUMENT_TYPES',
    'Sale', 'SaleItem', 'SaleEvent', 'SALE_STATUSES', 'PAYMENT_METHODS', 'SALE_DOCUMENT_TYPES',
    'FiscalDocument', 'EmissionAttempt', 'SUNAT_DOCUMENT_CODES', 'EMISSION_STATUSES',
    'Staff',
    'SalesShift', 'SHIFT_STATUSES',
]
