"""
SLA Compliance Module
=====================

Bounded context for exchange request deadlines.

Responsibilities:
- Assign a deadline to every request at creation (DeadlineCalculator)
- Classify open requests against their deadline (SLAStateEvaluator)
- Periodically reconcile cached overdue flags and emit events (monitor tick)
- Operator actions: extend deadline, send reminder
- Forward events to notification and audit sinks
"""
