"""
Toast presenter: short success/info/error notifications.

The session core only produces messages; a UI registers a handler to
display them. Without one they go to the log.
"""
from dataclasses import dataclass
from typing import Callable, Optional

from portal_client.utils.logger import logger


@dataclass(frozen=True)
class ToastMessage:
    kind: str       # 'success' | 'info' | 'error'
    title: str
    message: str = ""


class Toast:

    def __init__(self, handler: Optional[Callable[[ToastMessage], None]] = None):
        self._handler = handler

    def set_handler(self, handler: Optional[Callable[[ToastMessage], None]]):
        self._handler = handler

    def show(self, kind: str, title: str = "", message: str = "") -> None:
        toast = ToastMessage(kind=kind, title=title, message=message)
        if kind == "error":
            logger.warning(f"Toast [{kind}] {title}: {message}")
        else:
            logger.info(f"Toast [{kind}] {title}: {message}")
        if self._handler:
            try:
                self._handler(toast)
            except Exception as e:
                logger.error(f"Error in toast handler: {e}")

    def success(self, title: str = "", message: str = "") -> None:
        self.show("success", title, message)

    def info(self, title: str = "", message: str = "") -> None:
        self.show("info", title, message)

    def error(self, title: str = "", message: str = "") -> None:
        self.show("error", title, message)
