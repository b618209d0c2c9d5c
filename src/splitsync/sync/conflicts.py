"""
Conflict policies used by `resolve_conflicts(local, server)`.

Each returns the winning instance. A manager picks one per entity type:

  users, requisitions,
  bank_accounts, transactions -> server_wins (server/provider is authoritative)
  groups, group_members,
  group_default_splits,
  payments, splits            -> last_writer_wins (ties go to the server)
  currency_conversions        -> local_wins (append-only, never rewritten)
"""


def server_wins(local, server):
    return server


def local_wins(local, server):
    return local


def last_writer_wins(local, server):
    if local.updated_at > server.updated_at:
        return local
    return server
