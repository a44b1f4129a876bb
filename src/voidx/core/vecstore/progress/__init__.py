from .progress_bar import InMemoryProgressBar, ProgressBar, ProgressState

__all__ = ["ProgressBar", "InMemoryProgressBar", "ProgressState"]
