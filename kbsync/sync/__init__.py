"""Website sync runs.

  orchestrator   - one run end to end (fetch, extract, diff, commit)
  locks          - per-tenant lock row with a lease and a cancel flag
  scheduler      - which tenants are due, bounded concurrent execution
  config_service - per-tenant configuration and its invariant
"""
