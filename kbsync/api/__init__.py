"""kbsync REST API package.

Exposes website sync configuration, manual runs, job history and conflict
resolution to the dashboard.

Mount point: /api/v1/
"""
