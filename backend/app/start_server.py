"""
Startup script for the healing backend.
On Windows this MUST be used instead of 'uvicorn main:app'.
"""

import sys
import os
import asyncio

# Force unbuffered output
os.environ['PYTHONUNBUFFERED'] = '1'

# Set Windows event loop policy before uvicorn creates the loop
if sys.platform == 'win32':
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))

    print(f"\n Starting healing backend on http://localhost:{port}", flush=True)
    print(f" API Docs available at: http://localhost:{port}/docs", flush=True)

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=False,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        access_log=True
    )
