"""kbsync HTTP server package.

Entry point:
    uvicorn kbsync.server.main:app --host 0.0.0.0 --port 8000
"""
