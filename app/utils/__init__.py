"""
UTILITIES PACKAGE
=================

Helpers used by the services (no HTTP routes, no business logic):

  sanitize - sanitize_content(text): ASCII-only copy of text.
  retry    - with_retry(fn) / fetch_with_retry(client, url): bounded exponential backoff.
"""
