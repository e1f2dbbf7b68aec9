"""ORM model exports for convenient imports elsewhere in the app."""

from dms.models.base import Base
from dms.models.dms_customer import DmsCustomerMaster
from dms.models.dms_delivery_log import DmsDeliveryLogDtl, DmsDeliveryLogHdr
from dms.models.dms_employee import DmsEmployeeMaster
from dms.models.dms_generic_sequence import DmsGenericSequence
from dms.models.dms_invoice import DmsInvoiceDtl, DmsInvoiceHdr
from dms.models.dms_ledger import DmsLedgerEntry
from dms.models.dms_product import DmsInventoryLot, DmsProductMaster

__all__ = [
    "Base",
    "DmsCustomerMaster",
    "DmsDeliveryLogDtl",
    "DmsDeliveryLogHdr",
    "DmsEmployeeMaster",
    "DmsGenericSequence",
    "DmsInventoryLot",
    "DmsInvoiceDtl",
    "DmsInvoiceHdr",
    "DmsLedgerEntry",
    "DmsProductMaster",
]
