"""kbindex: turn raw documents into chunked, embedded, searchable segments."""

__version__ = "0.1.0"
