"""Infrastructure layer for the file organizer."""

from . import repositories
