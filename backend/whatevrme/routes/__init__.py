"""
WhatevrMe Site — Routes Package
=================================

Route Inventory:
    - site.py:  /{path}        catch-all, delegates to the Dispatcher
    - api.py:   /api/note...   note API, reached through the Dispatcher's API probe
"""
