class RelayError(Exception):
    """Base error for everything the relay reports back as a server error."""


class UpstreamError(RelayError):
    """The Google API could not be reached or answered with a failure."""


class NoCandidatesError(RelayError):
    """The Google API answered but produced no usable candidate."""


class MalformedReplyError(RelayError):
    """The model's reply does not contain a parsable JSON object."""
