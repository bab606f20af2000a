# Middleware package init
"""
WhatevrMe Site — Middleware Package
=====================================

Middleware Chain:
    Request → [Access Log] → catch-all route → Dispatcher
"""
