#!/usr/bin/env python3
"""
Run the work item MCP server in STDIO mode for desktop MCP clients
Reads AZURE_DEVOPS_ORG_URL / AZURE_DEVOPS_PAT from the environment or .env
"""
import sys
import os

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from workitem_engine.server import mcp

if __name__ == "__main__":
    mcp.run()
