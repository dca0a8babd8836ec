"""Receivables Lifecycle Service

This service keeps receivable titles consistent across:
- Bulk import reconciliation of receivables and payables
- Settlement ("acordo") creation, cancellation, deletion and finalization
- Notary protest ("cartório") escrow transitions
- Per-installment liquidation
- Debtor aging and collection scheduling
"""

__version__ = "1.0.0"
