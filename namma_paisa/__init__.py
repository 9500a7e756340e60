"""
Namma Paisa Loans Service

Loan and EMI tracking back end for the Namma Paisa personal finance app:
schedule generation, payment recording, early closure and month locks,
with Decimal money math and a hash-chained audit trail.
"""

__version__ = "1.0.0"
