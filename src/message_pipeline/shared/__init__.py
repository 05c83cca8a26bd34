"""Components shared by the worker and the web front end."""
