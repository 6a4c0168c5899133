"""
SERVICES PACKAGE
=================

Business logic lives here. The API layer (app.main) calls these services;
they don't build HTTP responses themselves.

MODULES:
    chat_service       - RelayChatService: search, inject system message, open upstream stream.
    search_service     - SearchService: Tavily search with retries.
    stream_transformer - StreamTransformer: re-frames the upstream SSE body.
"""
