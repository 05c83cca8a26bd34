"""
Services package for Message Pipeline.

Contains the runnable services:
- worker: drains the Redis queue into PostgreSQL
- webapp: accepts messages over HTTP and lists stored records
"""
