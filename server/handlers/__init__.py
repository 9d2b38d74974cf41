"""
Message handler registry.

Maps every inbound message type to the coroutine that handles it.
"""

from orchestrator.protocol import WORKER_EVENT_TYPES, MessageType

from server.handlers.execution import (
    handle_session_stats,
    handle_start_execution,
    handle_stop_execution,
    handle_worker_event,
)
from server.handlers.registration import (
    handle_heartbeat,
    handle_register_ui,
    handle_worker_hello,
)
from server.handlers.system import (
    handle_check_binary,
    handle_check_prerequisites,
    handle_get_collection_list,
    handle_get_worker_version,
)
from server.handlers.tunnel import (
    handle_create_tunnel,
    handle_delete_tunnel,
    handle_get_tunnel_state,
    handle_update_tunnel_forwarding,
)
from server.handlers.webhook import handle_send_webhook, handle_test_tunnel

MESSAGE_HANDLERS = {
    # Registration
    MessageType.REGISTER_UI: handle_register_ui,
    MessageType.WORKER_HELLO: handle_worker_hello,
    MessageType.HEARTBEAT: handle_heartbeat,
    # Execution lifecycle
    MessageType.START_EXECUTION: handle_start_execution,
    MessageType.STOP_EXECUTION: handle_stop_execution,
    # Worker events
    **{message_type: handle_worker_event for message_type in WORKER_EVENT_TYPES},
    MessageType.SESSION_STATS: handle_session_stats,
    # Tunnels
    MessageType.CREATE_TUNNEL: handle_create_tunnel,
    MessageType.DELETE_TUNNEL: handle_delete_tunnel,
    MessageType.UPDATE_TUNNEL_FORWARDING: handle_update_tunnel_forwarding,
    MessageType.GET_TUNNEL_STATE: handle_get_tunnel_state,
    # Webhook proxy
    MessageType.SEND_WEBHOOK: handle_send_webhook,
    MessageType.TEST_TUNNEL: handle_test_tunnel,
    # System checks
    MessageType.CHECK_BINARY: handle_check_binary,
    MessageType.CHECK_PREREQUISITES: handle_check_prerequisites,
    MessageType.GET_WORKER_VERSION: handle_get_worker_version,
    MessageType.GET_COLLECTION_LIST: handle_get_collection_list,
}

__all__ = ["MESSAGE_HANDLERS"]
