#!/usr/bin/env python3
"""
Supervisor - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
One long-lived process that watches the configured components,
raises alerts and attempts bounded recovery.

- Compatible with PM2 / systemd process management
- Handles SIGINT and SIGTERM gracefully
- Exits with status 2 on invalid configuration

============================================================
USAGE
============================================================
Direct execution:
    python app.py --config config/supervisor.example.yaml

With PM2:
    pm2 start app.py --interpreter python --name supervisor -- --config supervisor.yaml

Environment-based configuration:
    SUPERVISOR_DATA_DIR=/var/lib/supervisor python app.py

============================================================
"""

import sys

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
