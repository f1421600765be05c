class AppError(Exception):
    kind = "AppError"
    status_code = 500
    error = "Internal error"

    def __init__(self, details: str = "", error: str | None = None):
        super().__init__(details or error or self.error)
        self.details = details
        if error:
            self.error = error

    def to_payload(self) -> dict:
        return {"error": self.error, "kind": self.kind, "details": self.details}


# === 🚫 INPUT ===
class InvalidInput(AppError):
    kind = "InvalidInput"
    status_code = 400
    error = "Invalid input"


class InvalidUrl(InvalidInput):
    error = "Invalid YouTube URL format"

    def __init__(self, received_url, details: str = "", error: str | None = None):
        super().__init__(details or f"Could not use URL: {received_url}", error)
        self.received_url = received_url

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["receivedUrl"] = self.received_url
        return payload


# === 🎛️ CONVERSION ===
class ConversionError(AppError):
    kind = "ConversionError"
    status_code = 400
    error = "Conversion failed"


class AcquisitionFailure(ConversionError):
    kind = "AcquisitionFailure"


class EncodingFailure(ConversionError):
    kind = "EncodingFailure"


class ProbeFailure(ConversionError):
    kind = "ProbeFailure"


# === 🔍 SEARCH ===
class SearchTransientEmpty(AppError):
    """Raised by a single search attempt that produced no usable candidates."""

    kind = "SearchTransientEmpty"
    error = "No results"


class SearchFailure(AppError):
    kind = "SearchFailure"
    status_code = 500
    error = "Search failed"
