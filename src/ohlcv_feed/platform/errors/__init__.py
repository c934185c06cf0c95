from .feed_error import FEED_ERROR_CODES, NOT_FOUND, UNEXPECTED_ERROR, FeedError

__all__ = ["FEED_ERROR_CODES", "FeedError", "NOT_FOUND", "UNEXPECTED_ERROR"]
