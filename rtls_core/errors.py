"""Exception hierarchy for the locating core."""


class RtlsError(Exception):
    """Base exception for all locating-core errors."""


class InsufficientData(RtlsError):
    """No usable measurement survived recency filtering."""

    def __init__(self, tag_id: str, message: str = "no recent measurements"):
        self.tag_id = tag_id
        super().__init__(f"{tag_id}: {message}")


class DegenerateGeometry(RtlsError):
    """Trilateration system is singular or too ill-conditioned to solve."""


class TagNotFound(RtlsError):
    """A docket has no RFID tag associated with it."""


class DocketNotFound(TagNotFound):
    """No docket exists for the requested code."""


class ReaderNotFound(RtlsError):
    """A reader id does not match any registered reader."""

    def __init__(self, reader_id: str):
        self.reader_id = reader_id
        super().__init__(f"Reader {reader_id} not found")


class GatewayError(RtlsError):
    """A command to a reader failed at the gateway."""


class PersistenceFailure(RtlsError):
    """A batch write to the persistence collaborator failed."""
