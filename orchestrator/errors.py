"""Domain errors raised by the orchestration core.

Handlers convert these into ``{"success": false, "error": ...}`` replies.
"""


class OrchestratorError(Exception):
    """Base class for orchestration failures that are reported to the UI"""


class ExecutionNotFoundError(OrchestratorError):
    def __init__(self, execution_id: str):
        super().__init__(f"No execution found with id {execution_id}")
        self.execution_id = execution_id


class TunnelError(OrchestratorError):
    """Failure while creating, deleting or reconfiguring a tunnel route"""


class TunnelNotFoundError(TunnelError):
    def __init__(self, port: int):
        super().__init__(f"No tunnel found for port {port}")
        self.port = port


class ProviderTokenMissingError(TunnelError):
    def __init__(self):
        super().__init__("Tunnel provider token not provided")
