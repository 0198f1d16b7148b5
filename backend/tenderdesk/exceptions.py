"""TenderDesk exceptions."""


class TenderDeskError(Exception):
    """Base TenderDesk exception."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DocumentNotFoundError(TenderDeskError):
    """Document missing from the store."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document not found: {collection}/{doc_id}", status_code=404)
        self.collection = collection
        self.doc_id = doc_id


class InvalidStageError(TenderDeskError):
    """Unknown tracking stage."""

    def __init__(self, stage: str):
        super().__init__(f"Invalid stage: {stage}", status_code=400)
        self.stage = stage


class TrackingEntryNotFoundError(TenderDeskError):
    """Tender is not tracked."""

    def __init__(self, tender_id: str):
        super().__init__(f"Tender is not tracked: {tender_id}", status_code=404)
        self.tender_id = tender_id


class TenderValidationError(TenderDeskError):
    """Tender data failed validation."""

    def __init__(self, errors: dict[str, str]):
        super().__init__(
            "Invalid tender data: " + "; ".join(f"{k}: {v}" for k, v in errors.items()),
            status_code=422,
        )
        self.errors = errors


class DuplicateCompetitorError(TenderDeskError):
    """Competitor already has a price for this tender."""

    pass


class LockNotAcquiredError(TenderDeskError):
    """Snapshot lock held by another process."""

    pass
