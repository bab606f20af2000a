# Services package init
"""
WhatevrMe Site — Services Layer
=================================

Service Inventory:
    - Dispatcher:        routing policy and non-API handlers
    - TemplateComposer:  view + includes → one renderable template
    - NotePad:           note store (gzip JSON files)
    - FileTree:          read-only views / includes / static directories
    - guess_mime_type:   content types for static assets
"""
