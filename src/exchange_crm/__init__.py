"""
Exchange CRM - SLA compliance service.

Assigns deadlines to exchange requests, audits open requests against them
and drives overdue/approaching notifications and audit records.
"""

__version__ = "1.0.0"
