"""
UTILITIES PACKAGE
=================

Helpers used by the services (no HTTP, no business logic):

  retry      - with_retry(fn, is_transient): awaits fn(); retries transient failures with backoff.
  sse        - format_sse(): one Server-Sent Events frame.
  formatting - format_reply_for_display(): reply text -> escaped <p> paragraphs.
"""
