"""
Message Pipeline - queue-to-database ingestion demo.

A web front end pushes text messages onto a Redis list and a background
worker drains the list into PostgreSQL, one record per message.
"""

__version__ = "1.0.0"
__author__ = "Message Pipeline Team"
