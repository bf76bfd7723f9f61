"""
Arrears Core
============

Usage-based invoicing core: reconciles a subscription's metered usage
against its plan timeline and the invoice items already issued.

This package provides:
- Contiguous usage interval construction from billing events
- Capacity and consumable usage pricing per billing period
- Idempotent reconciliation against existing invoice items
"""

__version__ = "1.0.0"
