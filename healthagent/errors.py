class ProbeError(Exception):
    """A health check could not determine the state it inspects."""
    pass


class TransmissionError(Exception):
    """A snapshot could not be delivered to the server."""
    pass
