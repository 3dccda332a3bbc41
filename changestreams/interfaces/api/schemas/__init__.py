from .hub import HubCommand, HubStatusRead

__all__ = ["HubCommand", "HubStatusRead"]
