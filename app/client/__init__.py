"""
CLIENT PACKAGE
==============

Client-side helpers for consuming the relayed SSE stream:

  stream_consumer - StreamConsumer, ReconstructionBuffer and join_token().
"""
