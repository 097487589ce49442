"""tasksync: to-do backend with one-way Google and Outlook calendar sync."""

__version__ = "0.1.0"
