"""
AI shopping gateway: one commerce backend exposed to AI agents over REST,
ACP, UCP and MCP.
"""

__version__ = "1.0.0"
