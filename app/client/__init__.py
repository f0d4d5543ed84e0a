from app.client.relay_client import ConnectionState, Conversation, RelayClient

__all__ = ["ConnectionState", "Conversation", "RelayClient"]
