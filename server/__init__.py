"""
Orchestration server: WebSocket session endpoint, message handlers and API.
"""
