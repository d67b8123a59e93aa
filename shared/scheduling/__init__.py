from .task import ScheduledTask

__all__ = ["ScheduledTask"]
