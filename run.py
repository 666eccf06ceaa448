#!/usr/bin/env python3
"""
Lending Circle Entry Point

Starts the FastAPI server for the lending circle engine.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from lending_circle.api import run_server
from lending_circle.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Lending Circle engine...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Lending Circle engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
