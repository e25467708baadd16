from .catalog import Product, StockLevel, InventoryBatch, InventoryTransaction
from .customers import Customer
from .invoices import CustomerInvoice, CustomerInvoiceLine, CustomerReceipt, ReceiptAllocation
from .ledger import LedgerEntry
from .banking import BankAccount, BankTransaction
from .pos import PosSale, PosSaleItem
from .returns import SalesReturn, SalesReturnLine, CreditNote, CreditNoteApplication
from .settings import SystemConfig
from .documents import DocumentSequence

__all__ = [
    'Product', 'StockLevel', 'InventoryBatch', 'InventoryTransaction',
    'Customer',
    'CustomerInvoice', 'CustomerInvoiceLine', 'CustomerReceipt', 'ReceiptAllocation',
    'LedgerEntry',
    'BankAccount', 'BankTransaction',
    'PosSale', 'PosSaleItem',
    'SalesReturn', 'SalesReturnLine', 'CreditNote', 'CreditNoteApplication',
    'SystemConfig',
    'DocumentSequence',
]
