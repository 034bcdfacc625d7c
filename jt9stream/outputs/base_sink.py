from abc import ABC, abstractmethod


class BaseSink(ABC):
    """
    Abstract base class for line output sinks.

    All sinks must implement write() and close() methods.
    """

    @abstractmethod
    def write(self, line: str) -> None:
        """
        Emit one complete line (without trailing newline).

        Args:
            line: Text to emit
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """
        Flush and release any resources held by the sink.
        """
        ...
