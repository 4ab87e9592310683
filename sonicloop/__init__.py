"""Single-threaded callback event loop for files, TCP listeners and timers on Unix."""

__version__ = "0.1.0"