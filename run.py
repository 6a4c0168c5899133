"""
RUN SCRIPT - Start the RelayChat server
=======================================

PURPOSE:
  Single entry point to start the backend.

WHAT IT DOES:
  - Runs the FastAPI app from app.main with uvicorn on 0.0.0.0:8000.
  - reload=True restarts the server when Python files change (development).

USAGE:
  python run.py

  Then chat from another terminal with: python chat_cli.py
  API docs: http://localhost:8000/docs

NOTE:
  Before running, set TOGETHER_API_KEY and TAVILY_API_KEY in .env.
"""

import uvicorn

# ------------------------------------------------------------------------------
# ENTRY POINT
# ------------------------------------------------------------------------------
if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",   # String path to the FastAPI app instance (module:variable).
        host="0.0.0.0",   # Listen on all network interfaces.
        port=8000,        # HTTP port; change if 8000 is already in use.
        reload=True       # Auto-restart when .py files change.
    )
