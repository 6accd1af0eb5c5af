"""
main.py: server launcher and entry point.

    python main.py

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("VENUE_HOLD_HOST", "127.0.0.1")
PORT = int(os.getenv("VENUE_HOLD_PORT", "8000"))


def main() -> None:
    """Start the reservation engine API server."""
    print("=" * 60)
    print("  Venue Hold Engine: temporary reservations & waiting queue")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=os.getenv("VENUE_HOLD_RELOAD", "0") == "1",
        log_level="info",
    )


if __name__ == "__main__":
    main()
