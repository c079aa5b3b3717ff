"""Exceptions raised by the read-along player."""


class StoryReaderError(Exception):
    """Base class for player errors."""
    pass


class ConfigurationError(StoryReaderError):
    """The settings file could not be read or parsed."""
    pass


class ArticleLoadError(StoryReaderError):
    """An article could not be fetched or parsed.

    The message is meant to be shown to the user as-is.
    """
    pass


class MediaUnavailable(StoryReaderError):
    """The page has no audio. Callers treat this as a silent page."""
    pass


class PrepareFailed(StoryReaderError):
    """Audio for a page could not be loaded or decoded."""
    pass


class SessionClosed(StoryReaderError):
    """An operation was attempted on a released playback session."""
    pass


class InvalidTransition(StoryReaderError):
    """A transport call was made from a state that does not allow it."""
    pass
