"""Allow ``python -m codecks_mcp.mcp_server``."""

from codecks_mcp.mcp_server import main

main()
