"""Task orchestration core for a crew of specialized workers.

Why a SQLite-backed queue instead of a broker?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The hard part here is not moving messages, it is the task lifecycle: a
typed state machine with a human approval gate, tenant scoping, parent/child
decomposition and an audit trail of every transition. All of it lives in
the same rows a dashboard reads. Claiming is a conditional ``UPDATE`` on the
status column, so overlapping dispatch cycles stay correct without any
process-level locking, and Redis is only an optional side channel for
change announcements.
"""
