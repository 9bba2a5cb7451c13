"""Patient-flow app for the careflow backend.

This package holds the department registry, the assignment ledger, the
flow engine that moves patients between departments and the notification
fan-out that keeps department staff informed.
"""
