#!/usr/bin/env python3
"""
Backend server launcher script.

Puts the backend directory on the Python path and starts uvicorn so the
measurement_workflow package imports the same way as under the tests.
Host and port come from SKIQC_HOST / SKIQC_PORT.
"""

import os
import sys

# Add the backend directory to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)


def main() -> None:
    import uvicorn

    uvicorn.run(
        "api:app",
        host=os.environ.get("SKIQC_HOST", "127.0.0.1"),
        port=int(os.environ.get("SKIQC_PORT", "8000")),
        reload=os.environ.get("SKIQC_RELOAD", "false").lower() in ("true", "1", "yes"),
        reload_dirs=[backend_dir],
    )


if __name__ == "__main__":
    main()
