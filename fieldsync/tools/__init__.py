"""
Operator tools for FieldSync.

- ticket_expiry: one-shot expiry sweep, run hourly from cron
- seed: load reference rows (shops, product classes) from JSON
"""
