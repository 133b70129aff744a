"""
Shared Kernel Module
====================

Shared infrastructure used by the bounded contexts of the CRM
(currently the SLA compliance module).

DO NOT add SLA business logic to the shared kernel.
"""
