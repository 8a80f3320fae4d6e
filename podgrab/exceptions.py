"""Custom exception hierarchy for podgrab."""


class PodgrabError(Exception):
    """Base exception for all podgrab errors."""


class ConfigError(PodgrabError):
    """Raised when run options are invalid."""


class FeedFetchError(PodgrabError):
    """Raised when the feed cannot be fetched or parsed."""


class NoEpisodesError(PodgrabError):
    """Raised when the feed has no entries at all."""


class OffsetTooLargeError(PodgrabError):
    """Raised when the offset skips past every entry in the feed."""


class NothingMatchedError(PodgrabError):
    """Raised when no entry passes the selection criteria."""


class ArchiveError(PodgrabError):
    """Base exception for archive ledger failures."""


class ArchiveCorruptError(ArchiveError):
    """Raised when an existing archive file cannot be parsed."""


class ArchiveWriteError(ArchiveError):
    """Raised when the archive file cannot be rewritten."""


class DownloadError(PodgrabError):
    """Raised when downloading a media asset fails."""


class MetadataError(PodgrabError):
    """Raised when writing a metadata sidecar fails."""


class PostProcessError(PodgrabError):
    """Raised when the ffmpeg post-processing step fails."""


class HookError(PodgrabError):
    """Raised when the user-supplied exec command fails."""
