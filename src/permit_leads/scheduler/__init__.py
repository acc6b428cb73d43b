"""Lock-guarded pipeline pass for cron.

One pass runs every source, links, optionally enriches and rescores. A named
SQLite lock keeps two passes from writing at once; a lock whose heartbeat is
older than its TTL is taken over.

CLI entrypoint is wired via `python -m permit_leads schedule`.
"""
