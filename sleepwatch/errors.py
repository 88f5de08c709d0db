"""Exceptions raised while starting the controller."""


class StartupError(Exception):
    """A component could not be initialized; the process cannot run."""
