"""MCP 工具服务 (monitor / executor)。"""
