"""Module entrypoint.

Allows:
    python -m mcp_wandb_run_server
"""

from __future__ import annotations

from mcp_wandb_run_server.server.run_server import main

if __name__ == "__main__":
    main()
