from execution.notifier import TelegramNotifier

__all__ = [
    "TelegramNotifier",
]
