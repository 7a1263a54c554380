from .comms import CommsClient
from .dispatcher import ActivityDispatcher, DispatchReport, format_completion_difference

__all__ = ["CommsClient", "ActivityDispatcher", "DispatchReport", "format_completion_difference"]
