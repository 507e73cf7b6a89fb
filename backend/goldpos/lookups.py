# Overview: Fixed code values for karats, charge types, and ledger statuses.

from __future__ import annotations

# =============================================================================
# KARATS
# =============================================================================

KARAT_18 = "18K"
KARAT_21 = "21K"
KARAT_22 = "22K"
KARAT_24 = "24K"

# Fine gold per 1000 parts of alloy
KARAT_FINENESS = {
    KARAT_18: 750,
    KARAT_21: 875,
    KARAT_22: 916,
    KARAT_24: 999,
}

KARATS = tuple(KARAT_FINENESS)

# =============================================================================
# CHARGE AND TAX TYPES
# =============================================================================

CHARGE_PERCENTAGE = "PERCENTAGE"
CHARGE_FIXED = "FIXED"
CHARGE_TYPES = (CHARGE_PERCENTAGE, CHARGE_FIXED)

# =============================================================================
# ORDERS
# =============================================================================

ORDER_SALE = "SALE"
ORDER_RETURN = "RETURN"
ORDER_REPAIR = "REPAIR"

ORDER_PENDING = "PENDING"
ORDER_COMPLETED = "COMPLETED"
ORDER_CANCELLED = "CANCELLED"
ORDER_REFUNDED = "REFUNDED"

# =============================================================================
# FINANCIAL TRANSACTIONS
# =============================================================================

TX_SALE = "SALE"
TX_RETURN = "RETURN"
TX_REPAIR = "REPAIR"
TX_REFUND = "REFUND"
TX_GOLD_PURCHASE = "GOLD_PURCHASE"

# Money taken in; only these can be voided or reversed
TX_INCOME_TYPES = (TX_SALE, TX_REPAIR)
# Money paid out of the till, stored with positive totals
TX_PAYOUT_TYPES = (TX_RETURN, TX_GOLD_PURCHASE)

TX_COMPLETED = "COMPLETED"
TX_VOIDED = "VOIDED"
TX_REFUNDED = "REFUNDED"

# Money moved for these statuses, so they count toward the drawer
TX_CASH_STATUSES = (TX_COMPLETED, TX_REFUNDED)

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_BANK_TRANSFER = "BANK_TRANSFER"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD, PAYMENT_BANK_TRANSFER)

# =============================================================================
# TREASURY
# =============================================================================

DIRECTION_CREDIT = "CREDIT"
DIRECTION_DEBIT = "DEBIT"
DIRECTIONS = (DIRECTION_CREDIT, DIRECTION_DEBIT)

TREASURY_ADJUSTMENT = "ADJUSTMENT"
TREASURY_FEED_FROM_CASH_DRAWER = "FEED_FROM_CASH_DRAWER"
TREASURY_SUPPLIER_PAYMENT = "SUPPLIER_PAYMENT"
TREASURY_TRANSFER_IN = "TRANSFER_IN"
TREASURY_TRANSFER_OUT = "TRANSFER_OUT"

# =============================================================================
# CASH DRAWER
# =============================================================================

DRAWER_OPEN = "OPEN"
DRAWER_CLOSED = "CLOSED"

# =============================================================================
# OWNERSHIP
# =============================================================================

MOVEMENT_PURCHASE = "PURCHASE"
MOVEMENT_PAYMENT = "PAYMENT"
MOVEMENT_SALE = "SALE"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_MANUFACTURE = "MANUFACTURE"
MOVEMENT_CONSOLIDATION = "CONSOLIDATION"

ALERT_LOW_OWNERSHIP = "LOW_OWNERSHIP"
ALERT_OUTSTANDING_PAYMENT = "OUTSTANDING_PAYMENT"
SEVERITY_HIGH = "HIGH"
SEVERITY_MEDIUM = "MEDIUM"

TRANSFER_WAIVE = "WAIVE"
TRANSFER_CONVERT = "CONVERT"
