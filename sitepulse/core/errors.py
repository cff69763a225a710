"""Domain errors. Routes let these propagate; handlers map them to HTTP."""


class TeamError(Exception):
    """A rule violation whose message is safe to show the caller (400)."""


class NotFound(Exception):
    """The resource is missing or not visible to the caller (404)."""
