#!/usr/bin/env python
"""Start the marketplace connection service with port configuration from the environment."""
import os
import uvicorn

if __name__ == "__main__":
    # Get port from environment, default to 8000
    port = int(os.environ.get("PORT", 8000))

    print(f"Starting marketlink on port {port}")

    uvicorn.run(
        "marketlink.main:build_default_app",
        factory=True,
        host="0.0.0.0",
        port=port,
        log_level="info"
    )
